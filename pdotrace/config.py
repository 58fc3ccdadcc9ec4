from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

_DEFAULT_ENV = "development"
_ENV_KEY = "FLASK_ENV"
_VALID_ENVS = {"development", "testing", "staging", "production"}
_FORBIDDEN_ENV_KEYS = ("APP_ENV", "PDOTRACE_ENV", "ENVIRONMENT")
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_LOCK_BACKENDS = {"auto", "process", "postgres"}


@dataclass(frozen=True)
class EnvironmentInfo:
    name: str
    source: str
    raw_value: str


class EnvReader:
    def __init__(self, data: Mapping[str, str] | None = None):
        self._data = dict(data or os.environ)
        self.warnings: list[str] = []

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def _value(self, key: str) -> str | None:
        value = self._data.get(key)
        if value is None:
            return None
        stripped = value.strip()
        return stripped if stripped else None

    def str(self, key: str, default: str | None = None) -> str | None:
        value = self._value(key)
        return value if value is not None else default

    def int(self, key: str, default: int = 0) -> int:
        value = self._value(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            self.warn(f"{key} expected integer but received {value!r}; falling back to {default}.")
            return default

    def float(self, key: str, default: float = 0.0) -> float:
        value = self._value(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            self.warn(f"{key} expected float but received {value!r}; falling back to {default}.")
            return default

    def bool(self, key: str, default: bool = False) -> bool:
        value = self._value(key)
        if value is None:
            return default
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        self.warn(f"{key} expected boolean but received {value!r}; falling back to {default}.")
        return default

    def choice(self, key: str, choices: set, default: str) -> str:
        value = self._value(key)
        if value is None:
            return default
        lowered = value.lower()
        if lowered in choices:
            return lowered
        self.warn(f"{key} expected one of {sorted(choices)} but received {value!r}; falling back to {default}.")
        return default

    def raw(self, key: str) -> str | None:
        return self._data.get(key)


def _normalized_env(value: str | None, *, default: str = _DEFAULT_ENV) -> str:
    if not value:
        return default
    return value.strip().lower() or default


def _normalize_db_url(url: str | None) -> str | None:
    if not url:
        return None
    return 'postgresql://' + url[len('postgres://'):] if url.startswith('postgres://') else url


def _resolve_environment(reader: EnvReader) -> EnvironmentInfo:
    for key in _FORBIDDEN_ENV_KEYS:
        if reader.raw(key) not in (None, ""):
            raise RuntimeError(
                f"{key} is no longer supported. Set {_ENV_KEY} to one of {sorted(_VALID_ENVS)} instead."
            )

    raw_value = reader.str(_ENV_KEY, _DEFAULT_ENV) or _DEFAULT_ENV
    normalized = _normalized_env(raw_value)
    if normalized not in _VALID_ENVS:
        raise RuntimeError(
            f"Invalid {_ENV_KEY}={raw_value!r}. Expected one of {sorted(_VALID_ENVS)}."
        )
    return EnvironmentInfo(name=normalized, source=_ENV_KEY, raw_value=raw_value)


env = EnvReader()
ENV_INFO = _resolve_environment(env)


class BaseConfig:
    FLASK_ENV = ENV_INFO.name
    SECRET_KEY = env.str('FLASK_SECRET_KEY', 'devkey-please-change-in-production')

    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = env.str('LOG_LEVEL', 'WARNING') or 'WARNING'
    LOG_REDACT_PII = env.bool('LOG_REDACT_PII', True)

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': env.int('SQLALCHEMY_POOL_SIZE', 20),
        'max_overflow': env.int('SQLALCHEMY_MAX_OVERFLOW', 10),
        'pool_pre_ping': True,
        'pool_recycle': env.int('SQLALCHEMY_POOL_RECYCLE', 1800),
        'pool_timeout': env.int('SQLALCHEMY_POOL_TIMEOUT', 30),
    }

    # Business timezone used for lot dates and expiry checks
    TRACE_BUSINESS_TIMEZONE = env.str('TRACE_BUSINESS_TIMEZONE', 'Asia/Seoul') or 'Asia/Seoul'

    # Recall
    TRACE_RECALL_WINDOW_HOURS = env.int('TRACE_RECALL_WINDOW_HOURS', 24)

    # Quantities
    TRACE_MAX_SHIPMENT_QUANTITY = env.int('TRACE_MAX_SHIPMENT_QUANTITY', 100000)
    TRACE_MAX_TREATMENT_QUANTITY = env.int('TRACE_MAX_TREATMENT_QUANTITY', 100)
    TRACE_MAX_LOT_QUANTITY = env.int('TRACE_MAX_LOT_QUANTITY', 1000000)

    # Returns
    TRACE_RETURN_REASON_MIN = env.int('TRACE_RETURN_REASON_MIN', 5)
    TRACE_RETURN_REASON_MAX = env.int('TRACE_RETURN_REASON_MAX', 500)

    # Lots and expiry
    TRACE_MIN_EXPIRY_DAYS = env.int('TRACE_MIN_EXPIRY_DAYS', 30)
    TRACE_MAX_EXPIRY_YEARS = env.int('TRACE_MAX_EXPIRY_YEARS', 5)
    TRACE_DEFAULT_EXPIRY_MONTHS = env.int('TRACE_DEFAULT_EXPIRY_MONTHS', 24)
    TRACE_DEFAULT_LOT_PREFIX = env.str('TRACE_DEFAULT_LOT_PREFIX', 'ND') or 'ND'
    TRACE_LOT_NUMBER_PATTERN = env.str('TRACE_LOT_NUMBER_PATTERN', r'^[A-Z]{2}-\d{8}-\d{3}$')
    TRACE_BLOCK_EXPIRED = env.bool('TRACE_BLOCK_EXPIRED', True)
    TRACE_SEQUENCE_RETRIES = env.int('TRACE_SEQUENCE_RETRIES', 3)

    # Virtual codes
    TRACE_CODE_SALT = env.str('TRACE_CODE_SALT', 'pdotrace') or 'pdotrace'
    TRACE_CODE_MAX_ATTEMPTS = env.int('TRACE_CODE_MAX_ATTEMPTS', 10)

    # Advisory locks (timeouts in seconds)
    TRACE_LOCK_BACKEND = env.choice('TRACE_LOCK_BACKEND', _LOCK_BACKENDS, 'auto')
    TRACE_LOCK_TIMEOUT_DEFAULT = env.float('TRACE_LOCK_TIMEOUT_DEFAULT', 5.0)
    TRACE_LOCK_TIMEOUT_SHIPMENT = env.float('TRACE_LOCK_TIMEOUT_SHIPMENT', 10.0)
    TRACE_LOCK_TIMEOUT_LOT_PRODUCTION = env.float('TRACE_LOCK_TIMEOUT_LOT_PRODUCTION', 5.0)
    TRACE_LOCK_TIMEOUT_QUICK = env.float('TRACE_LOCK_TIMEOUT_QUICK', 2.0)
    TRACE_LOCK_POLL_INTERVAL = env.float('TRACE_LOCK_POLL_INTERVAL', 0.05)
    TRACE_LOCK_RETRY_ATTEMPTS = env.int('TRACE_LOCK_RETRY_ATTEMPTS', 3)
    TRACE_LOCK_RETRY_DELAY = env.float('TRACE_LOCK_RETRY_DELAY', 1.0)
    TRACE_LOCK_RETRY_BACKOFF = env.bool('TRACE_LOCK_RETRY_BACKOFF', True)


class DevelopmentConfig(BaseConfig):
    ENV = 'development'
    DEBUG = True

    _db_url = _normalize_db_url(env.str('DATABASE_URL'))
    if _db_url:
        SQLALCHEMY_DATABASE_URI = _db_url
    else:
        instance_path = os.path.join(os.path.abspath(os.path.dirname(__file__)), '..', 'instance')
        os.makedirs(instance_path, exist_ok=True)
        SQLALCHEMY_DATABASE_URI = 'sqlite:///' + os.path.join(instance_path, 'pdotrace.db')

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 3600,
        'echo': False,
    }


class TestingConfig(BaseConfig):
    ENV = 'testing'
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
    }
    TRACE_LOCK_BACKEND = 'process'


class StagingConfig(BaseConfig):
    ENV = 'staging'
    DEBUG = False
    TESTING = False
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(env.str('DATABASE_URL'))
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 10,
        'max_overflow': 20,
        'pool_pre_ping': True,
        'pool_recycle': 1800,
    }


class ProductionConfig(BaseConfig):
    ENV = 'production'
    DEBUG = False
    TESTING = False
    SQLALCHEMY_DATABASE_URI = _normalize_db_url(env.str('DATABASE_URL'))
    LOG_LEVEL = env.str('LOG_LEVEL', 'INFO') or 'INFO'


config_map = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'staging': StagingConfig,
    'production': ProductionConfig,
}


Config = config_map[ENV_INFO.name]
ENV_DIAGNOSTICS = {
    'active': ENV_INFO.name,
    'source': ENV_INFO.source,
    'variables': {ENV_INFO.source: ENV_INFO.raw_value},
    'warnings': tuple(env.warnings),
}
