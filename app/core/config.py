# app/core/config.py
import os
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Configuration de l'application avec validation Pydantic"""

    # =====================================
    # APPLICATION
    # =====================================
    APP_NAME: str = "Sales Manager Sync"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # =====================================
    # SÉCURITÉ
    # =====================================
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    # Le header Authorization peut être absent sauf si l'opérateur l'exige
    SYNC_REQUIRE_AUTH: bool = False
    # False : les claims du token sont lus sans vérification de signature
    SYNC_VERIFY_TOKENS: bool = False

    # =====================================
    # BASE DE DONNÉES
    # =====================================
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "postgres")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "sales_manager")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: str = os.getenv("POSTGRES_PORT", "5432")
    DATABASE_URI: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URI:
            return self.DATABASE_URI
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # =====================================
    # SQLALCHEMY CONFIGURATION
    # =====================================
    SQLALCHEMY_ECHO: bool = False

    @property
    def SQLALCHEMY_ENGINE_OPTIONS(self) -> dict:
        if self.DATABASE_URL.startswith("sqlite"):
            return {"connect_args": {"check_same_thread": False}}
        return {
            "pool_size": 10,
            "max_overflow": 20,
            "pool_timeout": 30,
            "pool_recycle": 1800,
            "pool_pre_ping": True,
            "connect_args": {"client_encoding": "utf8", "connect_timeout": 10}
        }

    # =====================================
    # SYNCHRONISATION
    # =====================================
    SYNC_MAX_BATCH_SIZE: int = 100
    SYNC_DELTA_DEFAULT_LIMIT: int = 100
    SYNC_DELTA_MAX_LIMIT: int = 500
    SYNC_LOG_DEFAULT_LIMIT: int = 50

    # =====================================
    # CORS
    # =====================================
    CORS_ORIGINS: list = ["http://localhost:3000", "http://127.0.0.1:3000"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list = ["*"]
    CORS_ALLOW_HEADERS: list = ["*"]

    # =====================================
    # RATE LIMITING
    # =====================================
    RATE_LIMIT_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # =====================================
    # LOGGING
    # =====================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Instance globale des paramètres
settings = Settings()
