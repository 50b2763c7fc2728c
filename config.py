import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", os.getenv("PORT", "3000")))
    api_prefix: str = "/api"

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "biblioteca.db")
    database_pool_size: int = int(os.getenv("DATABASE_POOL_SIZE", "5"))
    database_timeout: float = float(os.getenv("DATABASE_TIMEOUT", "5"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Sistema de Préstamos de Biblioteca")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _as_bool(os.getenv("DEBUG", "False"))
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Frontend
    static_dir: str = os.getenv("STATIC_DIR", "public")
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


settings = Settings()
