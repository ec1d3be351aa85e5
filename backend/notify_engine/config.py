import logging
import logging.handlers
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "postgresql://notify:notify@db:5432/notify"
    secret_key: str = "change-me"

    # HTTP surface
    cors_origins: str = "*"
    cors_allow_credentials: bool = False
    trusted_hosts: str = "*"
    rate_limit_submit: str = "30/minute"

    # Scheduler / dispatch
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 15
    scheduler_batch_size: int = 50
    dispatch_workers: int = 8  # channel sends in flight; 0 = inline
    dispatch_concurrency: int = 2  # notifications dispatched at once; 0 = inline
    delivery_max_attempts: int = 3
    retry_window_hours: int = 24
    retry_interval_seconds: int = 300

    # Delivery policy
    critical_bypasses_preferences: bool = True
    in_app_always_enabled: bool = True
    default_channels: str = "IN_APP"
    guardian_excluded_categories: str = "SYSTEM,PERSONAL"

    # Email (SMTP)
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""  # plain or Fernet token (see integrations.email)
    smtp_sender_name: str = "School Notifications"

    # SMS / push gateways, webhooks
    sms_gateway_url: str = ""
    push_gateway_url: str = ""
    gateway_api_key: str = ""
    default_webhook_url: str = ""
    http_timeout_seconds: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_max_bytes: int = 10_485_760  # 10 MB
    log_backup_count: int = 5

    model_config = {"env_file": ".env", "env_prefix": "NOTIFY_"}

    @property
    def effective_database_url(self) -> str:
        # Heroku-style URLs still use the deprecated scheme
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url

    @property
    def cors_origins_list(self) -> list[str]:
        return _split(self.cors_origins)

    @property
    def trusted_hosts_list(self) -> list[str]:
        return _split(self.trusted_hosts)

    @property
    def default_channels_list(self) -> list[str]:
        return [c.upper() for c in _split(self.default_channels)]

    @property
    def guardian_excluded_categories_list(self) -> list[str]:
        return [c.upper() for c in _split(self.guardian_excluded_categories)]


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


settings = Settings()


def setup_logging() -> None:
    """Configure application-wide logging with rotating file handlers.

    Creates three handlers:
    - Console: INFO+ with brief format (for container logs)
    - app.log: DEBUG+ with detailed format, rotated at log_max_bytes
    - error.log: ERROR+ only, same rotation
    """
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    root.addHandler(console)

    detail_fmt = logging.Formatter(
        "%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    app_handler = logging.handlers.RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    app_handler.setLevel(logging.DEBUG)
    app_handler.setFormatter(detail_fmt)
    root.addHandler(app_handler)

    err_handler = logging.handlers.RotatingFileHandler(
        log_dir / "error.log",
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    err_handler.setLevel(logging.ERROR)
    err_handler.setFormatter(detail_fmt)
    root.addHandler(err_handler)

    # --- Quiet noisy third-party loggers ---
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, dir=%s, max=%s MB x %d backups",
        settings.log_level, log_dir, settings.log_max_bytes // 1_048_576, settings.log_backup_count,
    )
