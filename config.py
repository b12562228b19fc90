"""Config management for caspio-mcp-server."""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_PORT = 3000
SESSIONS_FILE_NAME = "sessions.json"


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    @property
    def port(self) -> int:
        return int(self.data.get("PORT") or DEFAULT_PORT)

    @property
    def host(self) -> str:
        return self.data.get("HOST") or "0.0.0.0"

    @property
    def base_url(self) -> str:
        # Railway provides RAILWAY_PUBLIC_DOMAIN automatically
        url = self.data.get("BASE_URL")
        if not url and self.data.get("RAILWAY_PUBLIC_DOMAIN"):
            url = f"https://{self.data['RAILWAY_PUBLIC_DOMAIN']}"
        return (url or f"http://localhost:{self.port}").rstrip("/")

    @property
    def data_dir(self) -> Path:
        # Railway persistent volume first, then local data directory
        value = self.data.get("RAILWAY_VOLUME_MOUNT_PATH") or self.data.get("DATA_DIR") or "./data"
        return Path(value)

    @property
    def sessions_file(self) -> Path:
        return self.data_dir / SESSIONS_FILE_NAME

    @property
    def sweep_interval(self) -> float:
        return float(self.data.get("SWEEP_INTERVAL_SECONDS") or 60)

    @property
    def caspio_timeout(self) -> float:
        return float(self.data.get("CASPIO_TIMEOUT_SECONDS") or 30)

    @property
    def enforce_pkce(self) -> bool:
        return _as_bool(self.data.get("ENFORCE_PKCE"))

    @property
    def max_submit_attempts(self) -> int:
        """Failed credential checks allowed per pending authorization (0 = unlimited)."""
        return int(self.data.get("MAX_SUBMIT_ATTEMPTS") or 0)

    @property
    def log_json(self) -> bool:
        return _as_bool(self.data.get("LOG_JSON"))

    @property
    def supabase_url(self) -> Optional[str]:
        return self.data.get("SUPABASE_URL") or None

    @property
    def supabase_key(self) -> Optional[str]:
        return self.data.get("SUPABASE_ANON_KEY") or None


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def load_config(env_file: Path = None) -> Config:
    """Load config from the environment (and a .env file if present)."""
    env_file = env_file or Path(".env")
    if env_file.exists():
        load_dotenv(env_file)
    return Config(dict(os.environ))
