from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    ENV_STATE: Optional[str] = None

    """Loads the dotenv file."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class GlobalConfig(BaseConfig):
    DATABASE_URL: Optional[str] = "sqlite+aiosqlite:///formsapi.db"
    LOG_LEVEL: str = "INFO"

    # Session tokens
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    SESSION_EXPIRE_MINUTES: int = 1440
    COOKIE_SECURE: bool = False

    # Demo accounts and demo login are only reachable when enabled
    DEMO_MODE: bool = False
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 5.0
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # PDF archive (Google Cloud Storage)
    GCS_BUCKET: Optional[str] = None
    GCS_CREDENTIALS: Optional[str] = None  # service account json; ambient credentials when unset
    GCS_PREFIX: str = "submissions"

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


class DevConfig(GlobalConfig):
    DEMO_MODE: bool = True
    LOG_LEVEL: str = "DEBUG"
    model_config = SettingsConfigDict(env_prefix="DEV_")


class ProdConfig(GlobalConfig):
    COOKIE_SECURE: bool = True
    model_config = SettingsConfigDict(env_prefix="PROD_")


class TestConfig(GlobalConfig):
    DATABASE_URL: Optional[str] = "sqlite+aiosqlite:///test.db"
    DEMO_MODE: bool = True
    SECRET_KEY: str = "test-secret-key"
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 0.5
    # the PDF archive client is swapped out in tests
    GCS_BUCKET: Optional[str] = "test-bucket"
    model_config = SettingsConfigDict(env_prefix="TEST_")


@lru_cache()
def get_config(env_state: Optional[str]):
    """Instantiate config based on the environment."""
    configs = {"dev": DevConfig, "prod": ProdConfig, "test": TestConfig}
    return configs[env_state or "dev"]()


config = get_config(BaseConfig().ENV_STATE)
