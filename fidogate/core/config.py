import os
from dotenv import load_dotenv
from typing import List, Optional, Any
from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl, field_validator
import secrets

# Explicitly load the .env file from the project root.
# This ensures that environment variables are available for Alembic and other CLI tools.
dotenv_path = os.path.join(os.path.dirname(__file__), '..', '..', '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)


class ChallengeBackend(str, Enum):
    """
    Where pending ceremony challenges are kept.

    - REDIS: shared across workers, expiry handled by Redis TTLs
    - MEMORY: process-local, for single-worker deployments and tests
    """
    REDIS = "redis"
    MEMORY = "memory"


class Settings(BaseSettings):
    # API Configuration
    PROJECT_NAME: str = "fidogate"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = secrets.token_urlsafe(32)
    ALGORITHM: str = "HS256"
    SESSION_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 days

    # CORS Configuration
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    def assemble_cors_origins(cls, v: str | List[str]) -> List[str] | str:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Database Configuration
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "fidogate"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "fidogate"
    DATABASE_URL: Optional[str] = None

    @field_validator("DATABASE_URL", mode="before")
    def assemble_db_connection(cls, v: Optional[str], values) -> Any:
        if isinstance(v, str) and v:
            return v
        user = values.data.get("POSTGRES_USER")
        password = values.data.get("POSTGRES_PASSWORD")
        auth = f"{user}:{password}" if password else user
        return (
            f"postgresql+asyncpg://{auth}@{values.data.get('POSTGRES_SERVER')}"
            f"/{values.data.get('POSTGRES_DB') or ''}"
        )

    # Redis Configuration
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 50

    # Ceremony challenges
    CHALLENGE_BACKEND: ChallengeBackend = ChallengeBackend.REDIS
    CHALLENGE_TTL_SECONDS: int = 300  # 5 minutes

    # FIDO2 Relying Party
    FIDO2_RP_ID: str = "localhost"
    FIDO2_RP_NAME: str = "fidogate"
    # Comma separated extra origins; empty means the fido2 default (https://<rp id>)
    FIDO2_ORIGINS: str = ""

    @property
    def fido2_origins(self) -> List[str]:
        return [i.strip() for i in self.FIDO2_ORIGINS.split(",") if i.strip()]

    # FIDO Metadata Service (MDS3) blob, optional
    FIDO2_MDS_BLOB_PATH: Optional[str] = None
    FIDO2_MDS_ROOT_CERT_PATH: Optional[str] = None

    # Reject assertions whose counter does not advance, including 0 -> 0
    SIGNATURE_COUNTER_STRICT: bool = True

    # Cookies
    COOKIE_SECURE: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    class Config:
        case_sensitive = True
        env_file = ".env"

settings = Settings()
