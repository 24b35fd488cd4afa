from typing import List, Optional, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "DocVault"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DB_USER: str = "docvault"
    DB_PASSWORD: str = ""
    DB_NAME: str = "docvault"
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DATABASE_URI: Optional[str] = None
    AUTO_CREATE_TABLES: bool = False

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URI:
            return self.DATABASE_URI
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Redis
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379

    @property
    def REDIS_URL(self) -> str:
        return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/0"

    # MinIO
    MINIO_ROOT_USER: str = "minioadmin"
    MINIO_ROOT_PASSWORD: str = "minioadmin"
    MINIO_BUCKET_NAME: str = "docvault-documents"
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_SECURE: bool = False
    STORAGE_CHUNK_SIZE: int = 64 * 1024

    # Notification service (fire-and-forget user action events)
    NOTIFICATION_SERVICE_URL: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: float = 30.0

    # CORS
    BACKEND_CORS_ORIGINS: Union[List[str], str] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, str) and v.startswith("["):
            return json.loads(v)
        return v

    # File Upload
    MAX_FILE_SIZE_MB: int = 100
    COPY_NAME_MAX_ATTEMPTS: int = 1000

    @property
    def MAX_FILE_SIZE_BYTES(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    # Structural locks
    STRUCTURE_LOCKS_ENABLED: bool = True
    STRUCTURE_LOCK_TTL_SECONDS: int = 300

    # Archives
    ARCHIVE_MANIFEST_ENABLED: bool = False


settings = Settings()
