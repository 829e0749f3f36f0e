"""
Run configuration for the performance workflow.

Follows the familiar configuration-class pattern: a shared ``Config`` base
class holds defaults (each overridable through a ``PERF_*`` environment
variable) and environment-specific subclasses override only what differs.
``get_config`` resolves the class from ``PERF_ENV``.

Because a load test is usually tuned per run, :func:`load_run_config` then
layers an optional YAML file on top of the selected class and returns an
immutable :class:`RunConfig` that the rest of the package receives
explicitly.

Key Concepts Demonstrated:
- Inheritance-based configuration hierarchy
- Environment variable overrides with sensible defaults
- YAML override file validated field by field
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

# Root of the repository; the default feed files live under ``data/``.
BASE_DIR = Path(__file__).resolve().parent.parent

PAYLOAD_FORMATS = ("json", "binary")


def _optional_int(raw: str | None) -> int | None:
    """Parse an optional integer environment value (empty means unset)."""
    if raw is None or not raw.strip():
        return None
    return int(raw)


def _as_str(value: Any) -> str:
    if value is None:
        raise TypeError("expected a string, got null")
    return str(value)


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("expected an integer, got a boolean")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"expected an integer, got {value!r}")
    return int(value)


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("expected a number, got a boolean")
    return float(value)


def _as_optional_int(value: Any) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _as_int(value)


# Coercion per ``RunConfig`` field annotation (annotations are strings here).
_COERCERS = {
    "str": _as_str,
    "int": _as_int,
    "float": _as_float,
    "Path": Path,
    "int | None": _as_optional_int,
}


class Config:
    """
    Base configuration shared by all environments.

    Credentials default to the values of a local development stack; real
    runs must inject them through the environment or the YAML file.
    """

    BASE_URL: str = os.environ.get("PERF_BASE_URL", "http://localhost:8080")

    # OAuth client used by the admin password grant
    CLIENT_ID: str = os.environ.get("PERF_CLIENT_ID", "ManagementPortalapp")
    CLIENT_SECRET: str = os.environ.get("PERF_CLIENT_SECRET", "")
    ADMIN_USERNAME: str = os.environ.get("PERF_ADMIN_USERNAME", "admin")
    ADMIN_PASSWORD: str = os.environ.get("PERF_ADMIN_PASSWORD", "admin")

    # OAuth client the subject's app is paired with
    PAIR_CLIENT_ID: str = os.environ.get("PERF_PAIR_CLIENT_ID", "aRMT")
    PAIR_CLIENT_SECRET: str = os.environ.get("PERF_PAIR_CLIENT_SECRET", "")

    KAFKA_API_VERSION: int = int(os.environ.get("PERF_KAFKA_API_VERSION", "3"))
    PROJECT_NAME: str = os.environ.get("PERF_PROJECT_NAME", "radar-perf-project")
    ORGANIZATION_NAME: str = os.environ.get("PERF_ORGANIZATION_NAME", "radar-perf-organization")
    NUMBER_OF_PARTICIPANTS: int = int(os.environ.get("PERF_NUMBER_OF_PARTICIPANTS", "10"))

    # Records per ingestion request and answers per questionnaire
    MESSAGE_NUMBER: int = int(os.environ.get("PERF_MESSAGE_NUMBER", "1"))
    MESSAGE_SIZE: int = int(os.environ.get("PERF_MESSAGE_SIZE", "10"))

    TOPICS_FEED: Path = Path(os.environ.get("PERF_TOPICS_FEED", BASE_DIR / "data" / "topics.csv"))
    SUBJECTS_FEED: Path = Path(os.environ.get("PERF_SUBJECTS_FEED", BASE_DIR / "data" / "users.csv"))
    INGESTION_TOPIC: str = os.environ.get("PERF_INGESTION_TOPIC", "questionnaire_response")
    PAYLOAD_FORMAT: str = os.environ.get("PERF_PAYLOAD_FORMAT", "json")
    SCHEMA_VERSION: int = int(os.environ.get("PERF_SCHEMA_VERSION", "1"))

    # Seconds before any single request is abandoned
    REQUEST_TIMEOUT: float = float(os.environ.get("PERF_REQUEST_TIMEOUT", "30"))
    GET_RETRIES: int = int(os.environ.get("PERF_GET_RETRIES", "0"))
    RETRY_BACKOFF: float = float(os.environ.get("PERF_RETRY_BACKOFF", "0.5"))
    CONFLICT_RETRIES: int = int(os.environ.get("PERF_CONFLICT_RETRIES", "2"))
    # Unset means aborted sessions never stop the run
    MAX_ABORTED_SESSIONS: int | None = _optional_int(os.environ.get("PERF_MAX_ABORTED_SESSIONS"))

    # Closed-model ingestion profile
    INGESTION_START_USERS: int = int(os.environ.get("PERF_INGESTION_START_USERS", "5"))
    INGESTION_USER_INCREMENT: int = int(os.environ.get("PERF_INGESTION_USER_INCREMENT", "5"))
    INGESTION_STEPS: int = int(os.environ.get("PERF_INGESTION_STEPS", "5"))
    INGESTION_LEVEL_SECONDS: float = float(os.environ.get("PERF_INGESTION_LEVEL_SECONDS", "60"))
    INGESTION_RAMP_SECONDS: float = float(os.environ.get("PERF_INGESTION_RAMP_SECONDS", "10"))


class DevelopmentConfig(Config):
    """Local stack defaults; a handful of participants keeps setup fast."""

    NUMBER_OF_PARTICIPANTS: int = int(os.environ.get("PERF_NUMBER_OF_PARTICIPANTS", "3"))


class TestingConfig(Config):
    """
    Configuration for the automated test suite.

    Points at a host name that never resolves so an accidentally unpatched
    request fails fast instead of hitting a real platform.
    """

    BASE_URL: str = os.environ.get("TEST_PERF_BASE_URL", "http://platform.test")
    CLIENT_SECRET: str = "test-client-secret"
    PAIR_CLIENT_SECRET: str = "test-pair-secret"
    NUMBER_OF_PARTICIPANTS: int = 2
    MESSAGE_SIZE: int = 3
    REQUEST_TIMEOUT: float = 5.0
    INGESTION_LEVEL_SECONDS: float = 6.0
    INGESTION_RAMP_SECONDS: float = 2.0


class ProductionConfig(Config):
    """Shared environments: transient GET failures are retried twice."""

    GET_RETRIES: int = int(os.environ.get("PERF_GET_RETRIES", "2"))


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Resolve a configuration class by environment name.

    Args:
        env: One of ``"development"``, ``"testing"`` or ``"production"``.
            When ``None``, ``PERF_ENV`` is consulted, falling back to
            ``"development"``.

    Returns:
        The configuration class; unknown names map to ``DevelopmentConfig``.
    """
    if env is None:
        env = os.environ.get("PERF_ENV", "development")
    return config.get(env, config["default"])


@dataclass(frozen=True)
class RunConfig:
    """Immutable settings for one load-test run."""

    base_url: str
    client_id: str
    client_secret: str
    admin_username: str
    admin_password: str
    pair_client_id: str
    pair_client_secret: str
    kafka_api_version: int
    project_name: str
    organization_name: str
    number_of_participants: int
    message_number: int
    message_size: int
    topics_feed: Path
    subjects_feed: Path
    ingestion_topic: str
    payload_format: str
    schema_version: int
    request_timeout: float
    get_retries: int
    retry_backoff: float
    conflict_retries: int
    max_aborted_sessions: int | None
    ingestion_start_users: int
    ingestion_user_increment: int
    ingestion_steps: int
    ingestion_level_seconds: float
    ingestion_ramp_seconds: float

    def __post_init__(self):
        for field in fields(self):
            value = getattr(self, field.name)
            try:
                coerced = _COERCERS[field.type](value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{field.name}: invalid value {value!r} ({exc})") from exc
            object.__setattr__(self, field.name, coerced)

        if self.payload_format not in PAYLOAD_FORMATS:
            raise ValueError(
                f"payload_format must be one of {PAYLOAD_FORMATS}, got {self.payload_format!r}"
            )
        for name in (
            "number_of_participants",
            "message_number",
            "message_size",
            "ingestion_steps",
            "kafka_api_version",
            "schema_version",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        for name in (
            "get_retries",
            "conflict_retries",
            "ingestion_start_users",
            "ingestion_user_increment",
            "retry_backoff",
            "ingestion_ramp_seconds",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")
        for name in ("request_timeout", "ingestion_level_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_aborted_sessions is not None and self.max_aborted_sessions < 0:
            raise ValueError("max_aborted_sessions must not be negative")

    @classmethod
    def from_config_class(cls, config_class: type[Config]) -> RunConfig:
        """Build a run config from the upper-case attributes of *config_class*."""
        return cls(**{field.name: getattr(config_class, field.name.upper()) for field in fields(cls)})


_FIELD_NAMES = frozenset(field.name for field in fields(RunConfig))


def _load_overrides(path: Path) -> dict[str, Any]:
    """
    Read a YAML mapping of ``RunConfig`` field names to values.

    Raises:
        ValueError: If the document is not a mapping or names unknown fields.
    """
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Run configuration file {path} must contain a mapping")

    unknown = sorted(set(data) - _FIELD_NAMES)
    if unknown:
        raise ValueError(f"Unknown run configuration keys in {path}: {', '.join(unknown)}")
    return data


def load_run_config(env: str | None = None, path: Path | str | None = None) -> RunConfig:
    """
    Resolve the configuration for a run.

    Args:
        env: Environment name passed to :func:`get_config`.
        path: Optional YAML override file.  When ``None``, the ``PERF_CONFIG``
            environment variable is consulted.

    Returns:
        The class defaults with the YAML overrides applied.
    """
    run_config = RunConfig.from_config_class(get_config(env))

    if path is None:
        path = os.environ.get("PERF_CONFIG") or None
    if path is None:
        return run_config

    return replace(run_config, **_load_overrides(Path(path)))
