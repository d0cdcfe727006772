from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List, Optional

# URIs still holding a template placeholder such as <db_password> count as unset
PLACEHOLDER_MARKER = "<"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # MongoDB (optional, in-memory storage when absent)
    mongodb_uri: Optional[str] = None
    mongodb_db: str = "resumai"
    mongodb_timeout_ms: int = 3000

    # Session tokens
    jwt_secret: str = "dev_secret_change_me"
    token_expiry_days: int = 7
    bcrypt_rounds: int = 10

    # Gemini
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1"
    ai_timeout_seconds: float = 120.0

    # Client side
    api_url: str = "http://localhost:4000"
    local_storage_path: Optional[str] = ".resumai/storage.json"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    cors_origins: List[str] = ["*"]

    @property
    def mongodb_configured(self) -> bool:
        return bool(self.mongodb_uri) and PLACEHOLDER_MARKER not in self.mongodb_uri


@lru_cache()
def get_settings() -> Settings:
    return Settings()
