"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, model_validator

load_dotenv()

_PROJECT_ROOT = Path(__file__).resolve().parent

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config(BaseModel):
    """Centralised app configuration backed by env vars."""

    # Local document store
    database_path: str = str(_PROJECT_ROOT / "data" / "shop_backoffice.db")

    # Cloud mirror (Supabase REST)
    cloud_url: str = ""
    cloud_key: str = ""
    cloud_table: str = "shop_data"
    cloud_record_id: str = "current_store_data"
    cloud_auto_push: bool = False
    cloud_pull_on_start: bool = False

    # Business rules
    default_consignment_fee: float = 20.0
    report_top_n: int = 5
    version_retry_limit: int = 3

    # Flask
    flask_host: str = "127.0.0.1"
    flask_port: int = 5000
    flask_debug: bool = True
    flask_secret_key: str = "change-me-in-production"  # noqa: S105
    cors_origins: list[str] = ["http://localhost:5173"]

    log_level: str = "INFO"

    @property
    def cloud_configured(self) -> bool:
        return bool(self.cloud_url and self.cloud_key)

    @model_validator(mode="after")
    def _warn_empty_critical_fields(self) -> Config:
        """Log a warning when the cloud mirror is not configured."""
        if not self.cloud_configured:
            logger.warning("CLOUD_URL or CLOUD_KEY not set, cloud mirroring disabled")
        return self

    @classmethod
    def from_env(cls) -> Config:
        """Build config from environment variables."""
        cors_raw = os.getenv("CORS_ORIGINS", "http://localhost:5173")
        cors_origins = [o.strip() for o in cors_raw.split(",") if o.strip()]

        return cls(
            database_path=os.getenv(
                "DATABASE_PATH", str(_PROJECT_ROOT / "data" / "shop_backoffice.db")
            ),
            cloud_url=os.getenv("CLOUD_URL", ""),
            cloud_key=os.getenv("CLOUD_KEY", ""),
            cloud_table=os.getenv("CLOUD_TABLE", "shop_data"),
            cloud_record_id=os.getenv("CLOUD_RECORD_ID", "current_store_data"),
            cloud_auto_push=_env_flag("CLOUD_AUTO_PUSH", "false"),
            cloud_pull_on_start=_env_flag("CLOUD_PULL_ON_START", "false"),
            default_consignment_fee=float(os.getenv("DEFAULT_CONSIGNMENT_FEE", "20")),
            report_top_n=int(os.getenv("REPORT_TOP_N", "5")),
            version_retry_limit=int(os.getenv("VERSION_RETRY_LIMIT", "3")),
            flask_host=os.getenv("FLASK_HOST", "127.0.0.1"),
            flask_port=int(os.getenv("FLASK_PORT", "5000")),
            flask_debug=_env_flag("FLASK_DEBUG", "true"),
            flask_secret_key=os.getenv("FLASK_SECRET_KEY", "change-me-in-production"),
            cors_origins=cors_origins,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


settings = Config.from_env()
