from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from svc_vton.domain.validators import ImageConstraints


def _split_csv(raw: str) -> List[str]:
    return [v.strip() for v in (raw or "").split(",") if v.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ----------------------------
    # Service
    # ----------------------------
    LOG_LEVEL: str = "INFO"
    SERVICE_VERSION: str = "1.0.0"

    # ----------------------------
    # Database
    # ----------------------------
    DATABASE_URL: str = ""
    DB_POOL_MIN: int = 1
    DB_POOL_MAX: int = 10
    DB_COMMAND_TIMEOUT: float = 30.0

    # ----------------------------
    # Auth (user access JWT)
    # ----------------------------
    JWT_SECRET: str = ""
    JWT_ALG: str = "HS256"
    JWT_ISSUER: str = ""
    JWT_AUDIENCE: str = ""

    # ----------------------------
    # Azure Storage
    # ----------------------------
    AZURE_STORAGE_CONNECTION_STRING: str = ""
    VTON_GARMENT_CONTAINER: str = "vton-garments"
    VTON_PERSONA_CONTAINER: str = "vton-personas"
    VTON_GENERATION_CONTAINER: str = "vton-generations"
    VTON_ASSET_SAS_MINUTES: int = 60

    # ----------------------------
    # Vertex AI virtual try-on (job runner)
    # ----------------------------
    VERTEX_PROJECT_ID: str = ""
    VERTEX_LOCATION: str = "us-central1"
    VERTEX_VTO_MODEL: str = "virtualTryOnModels/default"
    VERTEX_API_KEY: str = ""
    VERTEX_BASE_URL: str = ""  # override for emulators / proxies
    VERTEX_TIMEOUT_SECONDS: float = 30.0
    VERTEX_CONNECT_RETRIES: int = 3
    VERTEX_WEBHOOK_SECRET: str = ""

    # ----------------------------
    # Generation rules
    # ----------------------------
    VTON_DEFAULT_ETA_SECONDS: int = 180
    VTON_MAX_GARMENT_BYTES: int = 10 * 1024 * 1024
    VTON_MIN_GARMENT_WIDTH: int = 512
    VTON_MIN_GARMENT_HEIGHT: int = 512
    VTON_ALLOWED_GARMENT_MIME: str = "image/png,image/jpeg"

    VTON_PERSONA_MAX_BYTES: int = 15 * 1024 * 1024
    VTON_PERSONA_MIN_WIDTH: int = 1024
    VTON_PERSONA_MIN_HEIGHT: int = 1024
    VTON_PERSONA_ALLOWED_MIME: str = "image/png,image/jpeg"

    VTON_RETAIN_HOURS_MIN: int = 24
    VTON_RETAIN_HOURS_MAX: int = 72
    VTON_RETAIN_HOURS_DEFAULT: int = 48

    # ----------------------------
    # Profile defaults
    # ----------------------------
    CONSENT_CURRENT_VERSION: str = "v1"
    CONSENT_BOOTSTRAP_VERSION: str = "v0"
    DEFAULT_FREE_GENERATION_QUOTA: int = Field(default=3, ge=0)
    QUOTA_RENEWAL_DAYS: int = 30

    # ----------------------------
    # Client-side status polling
    # ----------------------------
    STATUS_POLL_INTERVAL_SECONDS: float = 3.0
    STATUS_POLL_FAST_SECONDS: float = 1.0
    STATUS_POLL_ACCEL_AFTER_SECONDS: float = 120.0
    STATUS_POLL_MAX_FAILURES: int = 3

    def allowed_garment_mime_types(self) -> List[str]:
        return _split_csv(self.VTON_ALLOWED_GARMENT_MIME)

    def garment_constraints(self) -> ImageConstraints:
        mimes = self.allowed_garment_mime_types()
        if not mimes:
            raise RuntimeError("VTON_ALLOWED_GARMENT_MIME must list at least one MIME type")
        return ImageConstraints(
            allowed_mime_types=tuple(mimes),
            max_bytes=self.VTON_MAX_GARMENT_BYTES,
            min_width=self.VTON_MIN_GARMENT_WIDTH,
            min_height=self.VTON_MIN_GARMENT_HEIGHT,
        )

    def persona_constraints(self) -> ImageConstraints:
        return ImageConstraints(
            allowed_mime_types=tuple(_split_csv(self.VTON_PERSONA_ALLOWED_MIME)),
            max_bytes=self.VTON_PERSONA_MAX_BYTES,
            min_width=self.VTON_PERSONA_MIN_WIDTH,
            min_height=self.VTON_PERSONA_MIN_HEIGHT,
        )

    def vertex_enqueue_url(self) -> str:
        base = self.VERTEX_BASE_URL.strip().rstrip("/")
        if not base:
            base = f"https://{self.VERTEX_LOCATION}-aiplatform.googleapis.com/v1"
        return (
            f"{base}/projects/{self.VERTEX_PROJECT_ID}"
            f"/locations/{self.VERTEX_LOCATION}/virtualTryOn:enqueue"
        )


settings = Settings()
