from pathlib import Path

from pydantic_settings import BaseSettings


def _load_version() -> str:
    version_path = Path(__file__).resolve().parent / "VERSION"
    try:
        return version_path.read_text().strip()
    except FileNotFoundError:
        return "0.1.0"


class Settings(BaseSettings):
    """Application configuration using Pydantic settings."""

    # Database
    DATABASE_URL: str = "sqlite:///./data/provisio.db"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]

    # Application
    APP_NAME: str = "Provisio"
    APP_VERSION: str = _load_version()
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # ── Controller ──────────────────────────────────────────────────────
    # Shared secret agents present on /controller/register/
    SHARED_SECRET: str = "change-me-in-production"
    # Characters of each rendered file shown by debug-config
    DEBUG_PREVIEW_CHARS: int = 300

    # ── Variables ───────────────────────────────────────────────────────
    # Reject keys that are not in the variable catalog
    STRICT_VARIABLE_CATALOG: bool = False

    # ── IPAM ────────────────────────────────────────────────────────────
    # Reserve the first usable address of each prefix as its gateway
    IPAM_RESERVE_GATEWAY: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
