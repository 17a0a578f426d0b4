import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.chat import router as chat_router
from app.api.v1.documents import router as documents_router
from app.api.v1.ledger import router as ledger_router
from app.core.config import get_settings
from app.services.ai.common import router as ai_router
from app.services.ai.common.errors import ServiceUnavailable
from app.services.document_tracker import DocumentNotFound, DocumentStateError
from app.services.receipt_assistant import ReceiptAssistant

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="LedgerLens API",
    version="0.1.0",
    docs_url="/docs" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.openapi_enabled else None,
)


@app.on_event("startup")
async def _startup_assistant():
    if getattr(app.state, "assistant", None) is None:
        app.state.assistant = ReceiptAssistant()
    if not ai_router.is_available("extract"):
        logger.warning("No AI provider configured: uploads will be refused until one is set")


@app.on_event("shutdown")
async def _shutdown_assistant():
    assistant = getattr(app.state, "assistant", None)
    if assistant is not None:
        await assistant.aclose()


if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

app.include_router(documents_router, prefix="/api/v1", tags=["documents"])
app.include_router(ledger_router, prefix="/api/v1", tags=["ledger"])
app.include_router(chat_router, prefix="/api/v1", tags=["chat"])


@app.exception_handler(StarletteHTTPException)
async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Hide internal details for 5xx in production unless explicitly enabled.
    if exc.status_code >= 500 and exc.status_code != 503 and not settings.expose_error_details:
        return JSONResponse(status_code=exc.status_code, content={"detail": "Internal server error"})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(DocumentNotFound)
async def _document_not_found_handler(request: Request, exc: DocumentNotFound):
    return JSONResponse(status_code=404, content={"detail": "Document not found"})


@app.exception_handler(DocumentStateError)
async def _document_state_handler(request: Request, exc: DocumentStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ServiceUnavailable)
async def _service_unavailable_handler(request: Request, exc: ServiceUnavailable):
    return JSONResponse(status_code=503, content={"detail": "AI service is not configured"})


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception")
    if settings.expose_error_details:
        return JSONResponse(status_code=500, content={"detail": str(exc)})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health_check():
    return {"status": "ok", "extraction_available": ai_router.is_available("extract")}
