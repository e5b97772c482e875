from pydantic import BaseModel
import os
from pathlib import Path
from dotenv import load_dotenv
load_dotenv()  # carga el archivo .env de la raíz


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    app_name: str = os.getenv("APP_NAME", "Lumo Messaging")
    env: str = os.getenv("APP_ENV", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # "mongo" en producción, "memory" para desarrollo local y tests
    store_backend: str = os.getenv("STORE_BACKEND", "mongo").lower()
    mongodb_uri: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017/?replicaSet=rs0")
    db_name: str = os.getenv("DB_NAME", "lumo")
    store_timeout_seconds: float = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))

    jwt_secret: str = os.getenv("JWT_SECRET", "change-me")
    jwt_expires_hours: int = int(os.getenv("JWT_EXPIRES_HOURS", "8"))

    media_dir: str = os.getenv("MEDIA_DIR", str(Path(__file__).resolve().parents[1] / "media"))
    media_base_url: str = os.getenv("MEDIA_BASE_URL", "/media")
    max_upload_mb: int = int(os.getenv("MAX_UPLOAD_MB", "10"))

    inactive_retention_days: int = int(os.getenv("INACTIVE_RETENTION_DAYS", "30"))
    frontend_base_url: str = os.getenv("FRONTEND_BASE_URL", "http://localhost:8081")
    rate_limit_enabled: bool = _flag("RATE_LIMIT_ENABLED", "true")


_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
        Path(_settings.media_dir).mkdir(parents=True, exist_ok=True)
        Path(_settings.media_dir, "conversations").mkdir(parents=True, exist_ok=True)
    return _settings
