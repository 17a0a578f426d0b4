import datetime as dt
import io

import httpx
import pytest
import pytest_asyncio
from PIL import Image

from app.core.config import get_settings


@pytest.fixture(autouse=True)
def _reset_settings_cache(monkeypatch):
    # Tests run against the mock provider unless they opt into OpenAI explicitly.
    monkeypatch.setenv("AI_PROVIDER", "mock")
    monkeypatch.setenv("AI_ALLOWED_PROVIDERS", "openai,mock")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_png(width: int = 32, height: int = 24, color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_transaction(amount: float = 10.0, *, day: int = 1, category: str = "food", type: str = "expense", description: str = "item"):
    from app.schemas.finance import Transaction

    return Transaction(
        date=dt.date(2024, 3, day),
        amount=amount,
        category=category,
        description=description,
        type=type,
    )


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest_asyncio.fixture
async def assistant():
    from app.services.receipt_assistant import ReceiptAssistant

    a = ReceiptAssistant()
    yield a
    await a.aclose()


@pytest_asyncio.fixture
async def client(assistant):
    """In-process ASGI client bound to a fresh assistant."""
    from app.main import app

    app.state.assistant = assistant
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.state.assistant = None
