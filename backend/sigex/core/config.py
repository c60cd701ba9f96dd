from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import validator


class Settings(BaseSettings):
    PROJECT_NAME: str = "SIGEX"
    VERSION: str = "0.1.0"
    API_V1_STR: str = "/api/v1"

    # Persistence: "mongo" for deployments, "memory" for local development
    STORE_BACKEND: str = "mongo"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "sigex"

    # Document Storage
    DOCUMENT_STORAGE_PATH: str = "./storage/documents"
    MAX_DOCUMENT_SIZE_MB: int = 50

    # Private key sealing
    KEY_ENCRYPTION_SECRET: str = "change-me-key-encryption-secret"

    # Internal CA
    INTERNAL_CA_KEY_SIZE: int = 2048
    INTERNAL_CA_VALIDITY_DAYS: int = 365
    INTERNAL_CA_ORGANIZATION: str = "Gobierno de San Juan"
    INTERNAL_CA_ORGANIZATIONAL_UNIT: str = "Empleados Internos"

    # Certificate lifecycle
    CERT_EXPIRY_WARNING_DAYS: int = 30
    TRUSTED_GOVERNMENT_ISSUERS: List[str] = [
        "CA Gubernamental Argentina",
        "Autoridad Certificante Gobierno",
        "ONTI - Oficina Nacional de Tecnologias",
    ]

    # Government CA (two-phase, HTTP)
    GOVERNMENT_CA_PROVIDER_ID: str = "onti_ar"
    GOVERNMENT_CA_NAME: str = "ONTI Argentina"
    GOVERNMENT_CA_URL: Optional[str] = None
    GOVERNMENT_CA_API_KEY: Optional[str] = None

    # Commercial CA (two-phase, HTTP)
    COMMERCIAL_CA_PROVIDER_ID: str = "commercial"
    COMMERCIAL_CA_NAME: str = "Commercial CA"
    COMMERCIAL_CA_URL: Optional[str] = None
    COMMERCIAL_CA_API_KEY: Optional[str] = None

    # External CA calls
    CA_TIMEOUT_SECONDS: float = 10.0
    CA_MAX_RETRIES: int = 3
    CA_RETRY_BACKOFF_SECONDS: float = 0.5

    # Workflow
    REJECTED_IS_TERMINAL: bool = True

    # Graylog
    GRAYLOG_ENABLED: bool = False
    GRAYLOG_HOST: str = "graylog"
    GRAYLOG_PORT: int = 12201
    CONTAINER_NAME: Optional[str] = None

    @validator('STORE_BACKEND')
    def check_store_backend(cls, v):
        if v not in ("mongo", "memory"):
            raise ValueError(f"Unsupported store backend: {v}")
        return v

    @validator('INTERNAL_CA_KEY_SIZE')
    def check_key_size(cls, v):
        if v < 2048:
            raise ValueError("Internal CA keys must be at least 2048 bits")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
