"""GuiaFlow - Application state and configuration."""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, TYPE_CHECKING

from .errors import ConfigError

if TYPE_CHECKING:
    import argparse

__version__ = "0.1.0"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_TIMEZONE = "America/Sao_Paulo"

LOCAL_INBOX_FOLDER = "Inbox"
LOCAL_CLIENTS_FOLDER = "Clientes"


def _env_flag(name: str) -> bool:
    """True when an environment flag is set to 1/true/yes."""
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


def _env_list(name: str) -> List[str]:
    """Split a comma-separated environment variable, dropping blanks."""
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


class GuiaFlow:
    """Central configuration for GuiaFlow.

    Values are class attributes so every module reads the same settings.
    Call ``configure()`` once at startup; tests may set attributes directly.
    """

    # Storage backend: "gdrive" or "local:/path"
    storage: str = "gdrive"

    # Google
    credentials_file: str = "service_account_key.json"
    credentials_json: Optional[str] = None
    inbox_folder_id: str = ""
    clients_folder_id: str = ""
    sheet_id: str = ""
    clients_csv: str = ""

    # Distribution options
    target_month: str = ""
    force_send: bool = False
    dry_run: bool = False
    timezone: str = DEFAULT_TIMEZONE

    # Mail
    mail_backend: str = "smtp"
    gmail_delegated_user: str = ""
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    mail_from: str = ""
    mail_signature: str = ""

    # Run log
    data_dir: str = "data"
    run_stale_hours: float = 6.0

    # HTTP control surface
    api_keys: List[str] = []
    run_token: str = ""
    cron_schedule: str = ""
    host: str = "0.0.0.0"
    port: int = 3000

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def configure(cls, args: Optional["argparse.Namespace"] = None) -> None:
        """Load configuration from the environment, then apply CLI overrides."""
        cls.storage = os.environ.get("STORAGE", "").strip() or "gdrive"
        cls.credentials_file = os.environ.get(
            "GOOGLE_APPLICATION_CREDENTIALS", "service_account_key.json")
        cls.credentials_json = os.environ.get("GOOGLE_SERVICE_ACCOUNT_JSON") or None
        cls.inbox_folder_id = os.environ.get("DRIVE_FOLDER_ID_INBOX", "").strip()
        cls.clients_folder_id = os.environ.get("DRIVE_FOLDER_ID_CLIENTES", "").strip()
        cls.sheet_id = os.environ.get("SHEET_ID", "").strip()
        cls.clients_csv = os.environ.get("CLIENTS_CSV", "").strip()

        cls.target_month = os.environ.get("TARGET_MONTH", "").strip()
        cls.force_send = _env_flag("FORCE_SEND")
        cls.dry_run = _env_flag("DRY_RUN")
        cls.timezone = os.environ.get("TZ", "").strip() or DEFAULT_TIMEZONE

        backend = os.environ.get("MAIL_BACKEND", "").strip().lower()
        if not backend:
            backend = "gmail" if _env_flag("USE_GMAIL_API") else "smtp"
        cls.mail_backend = backend
        cls.gmail_delegated_user = os.environ.get("GMAIL_DELEGATED_USER", "").strip()
        cls.smtp_host = os.environ.get("SMTP_HOST", "smtp.gmail.com")
        cls.smtp_user = os.environ.get("SMTP_USER", "")
        cls.smtp_password = os.environ.get("SMTP_PASS", "")
        # SMTP_FROM wins over the delegated Gmail user
        cls.mail_from = (os.environ.get("SMTP_FROM") or cls.gmail_delegated_user).strip()
        cls.mail_signature = os.environ.get("MAIL_SIGNATURE", "").strip()

        cls.data_dir = os.environ.get("DATA_DIR", "data")
        cls.api_keys = _env_list("API_KEYS")
        cls.run_token = os.environ.get("RUN_TOKEN", "").strip()
        cls.cron_schedule = os.environ.get("CRON_SCHEDULE", "").strip()
        cls.host = os.environ.get("HOST", "0.0.0.0")
        cls.log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
        cls.log_file = os.environ.get("LOG_FILE") or None

        try:
            cls.smtp_port = int(os.environ.get("SMTP_PORT", "587"))
            cls.port = int(os.environ.get("PORT", "3000"))
            cls.run_stale_hours = float(os.environ.get("RUN_STALE_HOURS", "6"))
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}")

        if args is not None:
            if getattr(args, "force", False):
                cls.force_send = True
            if getattr(args, "dry_run", False):
                cls.dry_run = True
            if getattr(args, "month", None):
                cls.target_month = args.month
            if getattr(args, "local", None):
                cls.storage = f"local:{args.local}"

        # A local tree uses folder paths as ids
        if cls.storage.startswith("local:"):
            cls.inbox_folder_id = cls.inbox_folder_id or LOCAL_INBOX_FOLDER
            cls.clients_folder_id = cls.clients_folder_id or LOCAL_CLIENTS_FOLDER

    @classmethod
    def require(cls, **settings: str) -> None:
        """Raise ConfigError listing every named setting that is empty.

        Keyword names are the environment variable names, values are the
        attribute names on this class.
        """
        missing = [env for env, attr in settings.items() if not getattr(cls, attr)]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

    @classmethod
    def summary(cls) -> Dict[str, object]:
        """Non-secret settings, for startup logging."""
        return {
            "storage": cls.storage,
            "inbox_folder_id": cls.inbox_folder_id or None,
            "clients_folder_id": cls.clients_folder_id or None,
            "mail_backend": cls.mail_backend,
            "mail_from": cls.mail_from or None,
            "target_month": cls.target_month or None,
            "force_send": cls.force_send,
            "dry_run": cls.dry_run,
            "timezone": cls.timezone,
            "api_keys": len(cls.api_keys),
            "run_token": bool(cls.run_token),
            "cron_schedule": cls.cron_schedule or None,
        }


def setup_logging(level: str = "INFO", log_file: Optional[str] = None,
                  max_bytes: int = 10485760, backup_count: int = 5) -> logging.Logger:
    """Configure the root logger once at startup.

    Console output always goes to stdout; ``log_file`` adds a rotating file
    handler with the same format.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # googleapiclient is chatty at INFO
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
    return root


__all__ = [
    "GuiaFlow",
    "ConfigError",
    "setup_logging",
    "__version__",
]
