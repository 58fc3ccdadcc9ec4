import logging
import os
from typing import Any

from flask import Flask
from sqlalchemy.pool import StaticPool

from .config import ENV_DIAGNOSTICS
from .extensions import db, migrate
from .logging_config import configure_logging

logger = logging.getLogger(__name__)


def create_app(config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)
    os.makedirs(app.instance_path, exist_ok=True)

    _load_base_config(app, config)
    _apply_sqlalchemy_env_overrides(app)
    _configure_sqlite_engine_options(app)

    db.init_app(app)
    migrate.init_app(app, db)
    from . import models  # noqa: F401  # ensure models registered for Alembic

    configure_logging(app)
    _init_traceability(app)

    from .management import register_commands

    register_commands(app)
    _run_optional_create_all(app)

    return app


def _load_base_config(app: Flask, config: dict[str, Any] | None) -> None:
    app.config.from_object("pdotrace.config.Config")
    if config:
        app.config.update(config)
    app.config["ENV_DIAGNOSTICS"] = ENV_DIAGNOSTICS
    for warning in ENV_DIAGNOSTICS.get("warnings", ()):
        logger.warning("Environment configuration warning: %s", warning)

    if config and "DATABASE_URL" in config:
        app.config["SQLALCHEMY_DATABASE_URI"] = config["DATABASE_URL"]
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError("DATABASE_URL must be set for this environment")


def _apply_sqlalchemy_env_overrides(app: Flask) -> None:
    engine_opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}) or {})
    changed = False

    def _apply_int(env_key: str, option_key: str):
        nonlocal changed
        value = os.environ.get(env_key)
        if value in (None, ""):
            return
        try:
            engine_opts[option_key] = int(value)
            changed = True
        except ValueError:
            logger.warning("Invalid integer for %s: %s", env_key, value)

    _apply_int("SQLALCHEMY_POOL_SIZE", "pool_size")
    _apply_int("SQLALCHEMY_MAX_OVERFLOW", "max_overflow")

    if changed:
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_opts


def _configure_sqlite_engine_options(app: Flask) -> None:
    """SQLite has no server-side pool; file databases are shared between worker threads."""
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if not uri.startswith("sqlite"):
        return
    opts = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}))
    for key in ("pool_size", "max_overflow", "pool_timeout", "pool_recycle"):
        opts.pop(key, None)
    if uri in ("sqlite://", "sqlite:///:memory:"):
        opts["poolclass"] = StaticPool
        opts["connect_args"] = {"check_same_thread": False}
    else:
        opts["connect_args"] = {"check_same_thread": False, "timeout": 30}
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


def _init_traceability(app: Flask) -> None:
    from .services.traceability import build_engine

    engine = build_engine(app)
    app.extensions["traceability"] = engine
    logger.info(
        "Traceability engine ready (lock backend=%s, timezone=%s)",
        type(engine.locks).__name__,
        engine.rules.business_timezone,
    )


def _run_optional_create_all(app: Flask) -> None:
    flag = app.config.get("SQLALCHEMY_CREATE_ALL")
    if flag is None:
        value = (os.environ.get("SQLALCHEMY_CREATE_ALL") or "").strip().lower()
        flag = value in {"1", "true", "yes", "on"}
    if not flag:
        logger.info("db.create_all() not enabled; Alembic migrations are the source of truth")
        return
    logger.info("Creating tables via db.create_all() (SQLALCHEMY_CREATE_ALL)")
    with app.app_context():
        db.create_all()
