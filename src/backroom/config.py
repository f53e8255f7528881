import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger
from .paths import expand_abs

log = get_logger("config")


_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    the repository-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Read the nearest .env into a mapping; does not mutate os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    try:
        raw = dotenv_values(path)
    except OSError as e:
        log.warning(f"Failed reading .env: {e}")
        return {}
    env = {k: v.strip() for k, v in raw.items() if v is not None}
    log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    return env


class _Source:
    """Environment first, then .env values."""

    def __init__(self, dotenv_dir: str) -> None:
        self._env = _read_dotenv(dotenv_dir)

    def get(self, *keys: str, default: Optional[str] = None) -> Optional[str]:
        for key in keys:
            v = os.environ.get(key)
            if v is not None and v.strip():
                return v.strip()
            v = self._env.get(key)
            if v:
                return v
        return default

    def get_bool(self, key: str, default: bool) -> bool:
        v = self.get(key)
        if v is None:
            return default
        lowered = v.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        log.warning(f"{key}={v!r} is not a boolean; using default {default}")
        return default

    def get_float(self, key: str, default: float) -> float:
        v = self.get(key)
        if v is None:
            return default
        try:
            return float(v)
        except ValueError:
            log.warning(f"{key}={v!r} is not a number; using default {default}")
            return default


@dataclass
class Settings:
    backend: str = "sqlite"
    db_path: Optional[str] = None
    account: str = "default"
    root_dir: Optional[str] = None

    nlu_enabled: bool = True
    nlu_api_key: Optional[str] = None
    nlu_model: str = "gpt-4o-mini"
    nlu_base_url: Optional[str] = None
    nlu_timeout_seconds: float = 5.0

    transcription_enabled: bool = True
    whisper_model: str = "whisper-1"
    transcription_api_key: Optional[str] = None
    transcription_base_url: Optional[str] = None

    whatsapp_phone_number_id: Optional[str] = None
    whatsapp_access_token: Optional[str] = None
    whatsapp_verify_token: Optional[str] = None
    whatsapp_api_version: str = "v18.0"

    google_service_account_email: Optional[str] = None
    google_private_key: Optional[str] = None
    google_spreadsheet_id: Optional[str] = None

    dashboard_api_token: Optional[str] = None

    @property
    def whatsapp_configured(self) -> bool:
        return bool(self.whatsapp_phone_number_id and self.whatsapp_access_token)

    @property
    def sheets_configured(self) -> bool:
        return bool(
            self.google_service_account_email and self.google_private_key and self.google_spreadsheet_id
        )


OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def load_settings(dotenv_dir: Optional[str] = None) -> Settings:
    """Build Settings from env and the nearest .env (env wins)."""
    src = _Source(dotenv_dir or os.getcwd())

    backend = (src.get("INVENTORY_BACKEND", default="sqlite") or "sqlite").lower()
    if backend not in {"sqlite", "sheets"}:
        log.warning(f"INVENTORY_BACKEND={backend!r} is not supported; falling back to sqlite")
        backend = "sqlite"

    # OpenRouter keys imply the OpenRouter endpoint unless a base URL is given
    nlu_key = src.get("NLU_API_KEY", "OPENAI_API_KEY")
    nlu_base_url = src.get("NLU_BASE_URL")
    if not nlu_key:
        nlu_key = src.get("OPEN_ROUTER_API_KEY", "open_router_api_key")
        if nlu_key and not nlu_base_url:
            nlu_base_url = OPENROUTER_BASE_URL

    # OpenRouter has no audio endpoint, so voice notes never inherit it
    transcription_key = src.get("TRANSCRIPTION_API_KEY") or src.get("NLU_API_KEY", "OPENAI_API_KEY")
    transcription_base_url = src.get("TRANSCRIPTION_BASE_URL", "WHISPER_BASE_URL")
    if not transcription_base_url and nlu_base_url != OPENROUTER_BASE_URL:
        transcription_base_url = nlu_base_url

    db_path = src.get("INVENTORY_DB_PATH")
    private_key = src.get("GOOGLE_PRIVATE_KEY")
    if private_key:
        private_key = private_key.replace("\\n", "\n")

    return Settings(
        backend=backend,
        db_path=expand_abs(db_path) if db_path else None,
        account=src.get("INVENTORY_ACCOUNT", default="default") or "default",
        root_dir=dotenv_dir,
        nlu_enabled=src.get_bool("NLU_ENABLED", True),
        nlu_api_key=nlu_key,
        nlu_model=src.get("NLU_MODEL", default="gpt-4o-mini") or "gpt-4o-mini",
        nlu_base_url=nlu_base_url,
        nlu_timeout_seconds=src.get_float("NLU_TIMEOUT_SECONDS", 5.0),
        transcription_enabled=src.get_bool("TRANSCRIPTION_ENABLED", True),
        whisper_model=src.get("WHISPER_MODEL", default="whisper-1") or "whisper-1",
        transcription_api_key=transcription_key,
        transcription_base_url=transcription_base_url,
        whatsapp_phone_number_id=src.get("WHATSAPP_PHONE_NUMBER_ID"),
        whatsapp_access_token=src.get("WHATSAPP_ACCESS_TOKEN"),
        whatsapp_verify_token=src.get("WHATSAPP_VERIFY_TOKEN"),
        whatsapp_api_version=src.get("WHATSAPP_API_VERSION", default="v18.0") or "v18.0",
        google_service_account_email=src.get("GOOGLE_SERVICE_ACCOUNT_EMAIL"),
        google_private_key=private_key,
        google_spreadsheet_id=src.get("GOOGLE_SPREADSHEET_ID"),
        dashboard_api_token=src.get("DASHBOARD_API_TOKEN"),
    )


def _mask(value: Optional[str]) -> str:
    if not value:
        return "<unset>"
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}***{value[-2:]}"


def log_settings_banner(settings: Settings) -> None:
    """Log the effective configuration with secrets masked."""
    log.info("Backroom configuration")
    log.info(f"Storage backend    : {settings.backend}")
    log.info(f"Inventory account  : {settings.account}")
    if settings.backend == "sqlite":
        log.info(f"SQLite path        : {settings.db_path or '<default under var/>'}")
    else:
        log.info(f"Spreadsheet id     : {settings.google_spreadsheet_id or '<unset>'}")
    log.info(f"NLU enabled        : {settings.nlu_enabled} (key {_mask(settings.nlu_api_key)})")
    log.info(f"NLU model          : {settings.nlu_model} @ {settings.nlu_base_url or 'default endpoint'}")
    log.info(f"NLU timeout        : {settings.nlu_timeout_seconds}s")
    log.info(
        f"Transcription      : {settings.transcription_enabled} ({settings.whisper_model}, "
        f"key {_mask(settings.transcription_api_key)} @ {settings.transcription_base_url or 'default endpoint'})"
    )
    log.info(f"WhatsApp channel   : {'configured' if settings.whatsapp_configured else 'not configured'}")
    log.info(f"Dashboard token    : {_mask(settings.dashboard_api_token)}")
