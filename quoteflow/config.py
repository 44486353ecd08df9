"""Settings for the Quoteflow lifecycle engine.

Defaults match the point-of-sale rules: 30 days to expiry, a warning three
days before, manager approval to sign quotes over 10000. Deployments
override them through ``QUOTEFLOW_*`` environment variables, optionally
loaded from a ``.env`` file.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from dotenv import load_dotenv


ENVIRONMENTS = {"development", "staging", "production"}

ENV_PREFIX = "QUOTEFLOW_"


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{ENV_PREFIX}{name} must be a boolean, got {value!r}")


def _parse_int(name: str, value: str, minimum: int = 0) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from None
    if parsed < minimum:
        raise ValueError(f"{ENV_PREFIX}{name} must be >= {minimum}, got {parsed}")
    return parsed


def _parse_decimal(name: str, value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class QuoteflowSettings:
    """Runtime settings.

    Attributes:
        environment: development | staging | production
        high_value_threshold: Totals above this need approval for a sales associate to sign
        default_auto_expire_days: Inactivity days before a new quote expires
        warning_lead_days: How many days before expiry the warning goes out
        sweep_batch_size: Quotes processed per sweeper batch
        sweep_max_quotes: Upper bound on quotes examined per sweep
        sweep_dry_run: Log sweeper decisions without acting on them
        send_notifications: Dispatch expiry notices after forced expiry
        max_conflict_retries: Re-read/re-decide attempts on concurrent modification
        persistence_retry_attempts: Write attempts before surfacing a persistence failure
        persistence_retry_backoff_ms: Initial backoff, doubled per attempt
        log_level: Root log level; defaults to DEBUG in development, INFO otherwise
    """
    environment: str = "production"
    high_value_threshold: Decimal = Decimal("10000")
    default_auto_expire_days: int = 30
    warning_lead_days: int = 3
    sweep_batch_size: int = 100
    sweep_max_quotes: int = 1000
    sweep_dry_run: bool = False
    send_notifications: bool = True
    max_conflict_retries: int = 3
    persistence_retry_attempts: int = 3
    persistence_retry_backoff_ms: int = 200
    log_level: Optional[str] = None

    def __post_init__(self):
        if self.environment not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {sorted(ENVIRONMENTS)}, got {self.environment!r}")
        if self.warning_lead_days >= self.default_auto_expire_days:
            raise ValueError("warning_lead_days must be smaller than default_auto_expire_days")
        if self.sweep_batch_size < 1:
            raise ValueError("sweep_batch_size must be >= 1")

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level.upper()
        return "DEBUG" if self.is_development else "INFO"

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[str] = None,
    ) -> "QuoteflowSettings":
        """Build settings from ``QUOTEFLOW_*`` variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
            dotenv_path: Optional ``.env`` file loaded into ``os.environ`` first
                (existing variables win)

        Raises:
            ValueError: If a variable has an invalid value
        """
        if dotenv_path is not None:
            load_dotenv(dotenv_path, override=False)
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            return env.get(ENV_PREFIX + name)

        kwargs = {}
        if get("ENV") is not None:
            kwargs["environment"] = get("ENV")
        if get("HIGH_VALUE_THRESHOLD") is not None:
            kwargs["high_value_threshold"] = _parse_decimal("HIGH_VALUE_THRESHOLD", get("HIGH_VALUE_THRESHOLD"))

        int_settings = {
            "AUTO_EXPIRE_DAYS": ("default_auto_expire_days", 1),
            "WARNING_LEAD_DAYS": ("warning_lead_days", 0),
            "SWEEP_BATCH_SIZE": ("sweep_batch_size", 1),
            "SWEEP_MAX_QUOTES": ("sweep_max_quotes", 1),
            "MAX_CONFLICT_RETRIES": ("max_conflict_retries", 0),
            "PERSISTENCE_RETRY_ATTEMPTS": ("persistence_retry_attempts", 1),
            "PERSISTENCE_RETRY_BACKOFF_MS": ("persistence_retry_backoff_ms", 0),
        }
        for name, (attr, minimum) in int_settings.items():
            if get(name) is not None:
                kwargs[attr] = _parse_int(name, get(name), minimum)

        bool_settings = {
            "SWEEP_DRY_RUN": "sweep_dry_run",
            "SEND_NOTIFICATIONS": "send_notifications",
        }
        for name, attr in bool_settings.items():
            if get(name) is not None:
                kwargs[attr] = _parse_bool(name, get(name))

        if get("LOG_LEVEL") is not None:
            kwargs["log_level"] = get("LOG_LEVEL")

        return cls(**kwargs)


__all__ = [
    "ENVIRONMENTS",
    "QuoteflowSettings",
]
