from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "elepy"
    API_PREFIX: str = ""

    DATABASE_URL: str = "sqlite+pysqlite:///./elepy.db"

    JWT_SECRET: str = "change_me_jwt"
    JWT_TTL_MINUTES: int = 240

    CORS_ORIGINS: str = "http://localhost:3000"

    # Comma separated permission names; empty means public.
    DEFAULT_FIND_PERMISSIONS: str = ""
    DEFAULT_WRITE_PERMISSIONS: str = "authenticated"

    BOOTSTRAP_ENABLED: bool = True
    BOOTSTRAP_USERNAME: str = "admin"
    BOOTSTRAP_PASSWORD: str = "admin"
    BOOTSTRAP_PERMISSIONS: str = "admin"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @staticmethod
    def split_permissions(raw: str) -> tuple[str, ...]:
        return tuple(p.strip() for p in str(raw or "").split(",") if p.strip())

settings = Settings()
