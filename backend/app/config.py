from typing import Literal

from pydantic_settings import BaseSettings

PipelineKind = Literal["inventory", "recipes", "shopping", "main"]


class Settings(BaseSettings):
    model_config = {
        "env_file": "../.env",
        "extra": "ignore",
        "env_prefix": "",
        "case_sensitive": False,
    }

    # Kestra workflow engine (empty URL = engine not configured)
    kestra_url: str = ""
    kestra_namespace: str = "ai.smartfridge"
    kestra_api_token: str | None = None
    kestra_basic_auth: str | None = None  # base64("user:password")

    kestra_main_flow: str = "smart-fridge-main"
    kestra_inventory_flow: str = "manage-inventory"
    kestra_recipes_flow: str = "generate-recipes"
    kestra_shopping_flow: str = "create-shopping-list"

    kestra_main_webhook_key: str = ""
    kestra_inventory_webhook_key: str = ""
    kestra_recipes_webhook_key: str = ""
    kestra_shopping_webhook_key: str = ""

    kestra_poll_interval_seconds: float = 2.0
    kestra_poll_max_attempts: int = 60
    kestra_request_timeout_seconds: float = 30.0

    # Direct LLM fallback
    google_gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"

    # App
    environment: str = "development"
    log_level: str = "INFO"
    log_file: str = ""

    @property
    def engine_configured(self) -> bool:
        return bool(self.kestra_url)

    def flow_name(self, kind: PipelineKind) -> str:
        return getattr(self, f"kestra_{kind}_flow")

    def webhook_key(self, kind: PipelineKind) -> str:
        return getattr(self, f"kestra_{kind}_webhook_key")


settings = Settings()
