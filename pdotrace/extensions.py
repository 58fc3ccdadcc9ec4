from __future__ import annotations

from flask import current_app
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

__all__ = [
    "db",
    "migrate",
    "get_engine",
]

db = SQLAlchemy()
migrate = Migrate(compare_type=True, render_as_batch=True)


def get_engine():
    """Return the TraceabilityEngine wired into the active app."""
    engine = current_app.extensions.get("traceability")
    if engine is None:
        raise RuntimeError("Traceability engine is not configured; use create_app().")
    return engine
