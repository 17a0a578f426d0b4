from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )

    log_level: str = "INFO"
    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PUT",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Content-Type",
        "Accept",
    ])

    # --- AI providers ---
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    ai_provider: str = "openai"
    ai_allowed_providers_raw: str = Field(
        default="openai,mock",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_debug_store_raw: bool = False
    ai_timeout_seconds: float = 15.0

    # --- Document extraction ---
    ai_extract_model: str = "gpt-4o"
    ai_extract_temperature: float = 0.1
    ai_extract_max_tokens: int = 1000
    ai_extract_timeout_seconds: float = 20.0
    ai_extract_timeout_per_mb_seconds: float = 5.0
    ai_extract_timeout_max_seconds: float = 60.0
    ai_extract_max_concurrency: int = Field(default=4, ge=1)

    # --- Receipt chat ---
    ai_chat_model: str = "gpt-4o"
    ai_chat_temperature: float = 0.7
    ai_chat_max_tokens: int = 500
    ai_chat_history_limit: int = Field(default=50, ge=0)
    ai_chat_max_turns: int = Field(default=20, ge=0)

    # --- Insights ---
    ai_insights_model: str = "gpt-4o"
    ai_insights_temperature: float = 0.3
    ai_insights_max_tokens: int = 400
    ai_insights_window: int = Field(default=20, ge=1)

    # --- Uploads ---
    max_document_bytes: int = 10 * 1024 * 1024
    max_upload_batch: int = Field(default=10, ge=1)
    image_max_dimension: int = 2048

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def ai_allowed_providers(self) -> list[str]:
        """Allowlisted provider names; ``mock`` is always permitted."""
        providers = [p.lower() for p in _parse_list_value(self.ai_allowed_providers_raw)]
        if "mock" not in providers:
            providers.append("mock")
        return providers


@lru_cache
def get_settings() -> Settings:
    return Settings()
