from pydantic_settings import BaseSettings
from pydantic import Field
import os
from pathlib import Path
import dotenv

# Always load apps/.env (relative to this file), regardless of where the process is started.
_APPS_DIR = Path(__file__).resolve().parents[1]
dotenv.load_dotenv(dotenv_path=_APPS_DIR / ".env", override=False)


class Settings(BaseSettings):
    APP_HOST: str = Field(default=os.getenv("APP_HOST", "0.0.0.0"))
    APP_PORT: int = Field(default=int(os.getenv("APP_PORT", "8000")))
    FRONTEND_BASE_URL: str = Field(default=os.getenv("FRONTEND_BASE_URL", "http://localhost:5173"))

    # Firebase / Firestore
    # Path to the service account key; falls back to application default credentials when missing.
    FIREBASE_SERVICE_ACCOUNT_PATH: str = Field(
        default=os.getenv("FIREBASE_SERVICE_ACCOUNT_PATH", str(_APPS_DIR / "serviceAccountKey.json"))
    )
    FIREBASE_PROJECT_ID: str = Field(default=os.getenv("FIREBASE_PROJECT_ID", ""))

    # ---------------------------------------------------------------------
    # Demand pipeline
    #
    # Notes:
    # - Calendar buckets (year/month/day/hour) are computed in DEMAND_TIMEZONE.
    # - Daily re-aggregation triggered by load creation is throttled per day.
    # ---------------------------------------------------------------------
    DEMAND_TIMEZONE: str = Field(default=os.getenv("DEMAND_TIMEZONE", "UTC"))
    DEMAND_AGGREGATION_THROTTLE_MS: int = Field(
        default=int(os.getenv("DEMAND_AGGREGATION_THROTTLE_MS", "3600000"))
    )

    # Background aggregation job (APScheduler).
    ENABLE_DEMAND_SCHEDULER: bool = Field(
        default=(os.getenv("ENABLE_DEMAND_SCHEDULER", "true").strip().lower() == "true")
    )
    DEMAND_AGGREGATION_INTERVAL_MINUTES: int = Field(
        default=int(os.getenv("DEMAND_AGGREGATION_INTERVAL_MINUTES", "60"))
    )

    # Demand update notifications
    # If set, a JSON payload is POSTed here after each load creation hook run.
    DEMAND_WEBHOOK_URL: str = Field(default=os.getenv("DEMAND_WEBHOOK_URL", ""))
    DEMAND_WEBHOOK_TIMEOUT_SECONDS: float = Field(
        default=float(os.getenv("DEMAND_WEBHOOK_TIMEOUT_SECONDS", "5"))
    )

    # Real-time heatmap updates are purged this long after they were recorded.
    HEATMAP_UPDATE_RETENTION_HOURS: int = Field(
        default=int(os.getenv("HEATMAP_UPDATE_RETENTION_HOURS", "24"))
    )

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra fields like VITE_API_URL


settings = Settings()
