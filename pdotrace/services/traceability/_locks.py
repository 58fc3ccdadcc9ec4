"""Advisory lock domains.

Synopsis:
Key-scoped mutual exclusion for the three traceability lock domains. Each
acquisition has a deadline; on expiry ``LockTimeout`` is raised and nothing
is retried here. Callers that want retries wrap the whole operation with
``retry_on_lock_timeout``.

Glossary:
- Domain: a class of operations sharing a lock namespace and timeout budget.
- Key: composite tuple inside a domain, e.g. (sender_id, product_id).
- Transaction-scoped lock: PostgreSQL advisory lock released at COMMIT/ROLLBACK.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import threading
import time
import zlib
from typing import Callable, Dict, Iterable, Iterator, List, Tuple

from sqlalchemy import text

from ...errors import LockTimeout
from ...rules import LockSettings
from ...utils.error_messages import ErrorMessages as EM

logger = logging.getLogger(__name__)

LockKey = Tuple


class LockDomain(enum.IntEnum):
    SHIPMENT_TRANSACTION = 1001
    LOT_PRODUCTION = 1002
    VIRTUAL_CODE_ALLOCATION = 1003


class LockManager:
    """Scoped acquire-with-timeout over ordered keys. Subclasses provide ``_acquire``/``_release``."""

    def __init__(self, settings: LockSettings):
        self.settings = settings

    def timeout_for(self, domain: LockDomain) -> float:
        if domain == LockDomain.SHIPMENT_TRANSACTION:
            return self.settings.shipment_timeout
        if domain == LockDomain.LOT_PRODUCTION:
            return self.settings.lot_production_timeout
        return self.settings.default_timeout

    @contextlib.contextmanager
    def hold(self, domain: LockDomain, keys: Iterable[LockKey], timeout: float | None = None) -> Iterator[None]:
        """
        Acquire every key in ascending order, yield, then release in reverse.

        A single deadline covers the whole acquisition. Locks taken before a
        timeout are released before ``LockTimeout`` propagates.
        """
        ordered = sorted(set(tuple(key) for key in keys))
        budget = self.timeout_for(domain) if timeout is None else timeout
        deadline = time.monotonic() + budget
        acquired: List[LockKey] = []
        try:
            for key in ordered:
                if not self._acquire(domain, key, deadline):
                    logger.warning("Lock timeout: domain=%s key=%s budget=%.2fs", domain.name, key, budget)
                    raise LockTimeout(
                        EM.LOCK_TIMEOUT.format(domain=domain.name, key=key),
                        details={"domain": domain.name, "key": list(key), "timeout": budget},
                    )
                acquired.append(key)
            logger.debug("Acquired %s lock(s) %s", domain.name, ordered)
            yield
        finally:
            for key in reversed(acquired):
                self._release(domain, key)

    def _acquire(self, domain: LockDomain, key: LockKey, deadline: float) -> bool:  # pragma: no cover - abstract
        raise NotImplementedError

    def _release(self, domain: LockDomain, key: LockKey) -> None:  # pragma: no cover - abstract
        raise NotImplementedError


class InProcessLockManager(LockManager):
    """Keyed ``threading.Lock`` registry for single-process deployments and SQLite."""

    def __init__(self, settings: LockSettings):
        super().__init__(settings)
        self._registry_lock = threading.Lock()
        # (domain, key) -> [lock, waiters + holders]
        self._entries: Dict[Tuple[int, LockKey], list] = {}

    def _acquire(self, domain, key, deadline):
        slot = (int(domain), key)
        with self._registry_lock:
            entry = self._entries.setdefault(slot, [threading.Lock(), 0])
            entry[1] += 1

        remaining = deadline - time.monotonic()
        acquired = entry[0].acquire(timeout=remaining) if remaining > 0 else entry[0].acquire(blocking=False)
        if not acquired:
            self._forget(slot)
        return acquired

    def _release(self, domain, key):
        slot = (int(domain), key)
        entry = self._entries[slot]
        entry[0].release()
        self._forget(slot)

    def _forget(self, slot):
        with self._registry_lock:
            entry = self._entries.get(slot)
            if entry is None:
                return
            entry[1] -= 1
            if entry[1] <= 0:
                del self._entries[slot]

    def is_held(self, domain: LockDomain, key: LockKey) -> bool:
        entry = self._entries.get((int(domain), tuple(key)))
        return entry is not None and entry[0].locked()


class PostgresAdvisoryLockManager(LockManager):
    """
    ``pg_try_advisory_xact_lock(domain, hash(key))`` polled until the deadline.
    Locks belong to the session's transaction, so they are released by the
    commit or rollback that ends the operation.
    """

    def __init__(self, settings: LockSettings, session_getter: Callable):
        super().__init__(settings)
        self._session_getter = session_getter

    @staticmethod
    def key_hash(key: LockKey) -> int:
        raw = zlib.crc32(repr(key).encode("utf-8"))
        return raw - (1 << 32) if raw >= (1 << 31) else raw

    def _acquire(self, domain, key, deadline):
        session = self._session_getter()
        params = {"domain": int(domain), "key": self.key_hash(key)}
        while True:
            if session.execute(text("SELECT pg_try_advisory_xact_lock(:domain, :key)"), params).scalar():
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.settings.poll_interval)

    def _release(self, domain, key):
        # Released when the surrounding transaction ends.
        return None


def build_lock_manager(settings: LockSettings, dialect_name: str, session_getter: Callable) -> LockManager:
    backend = settings.backend
    if backend == "auto":
        backend = "postgres" if dialect_name.startswith("postgres") else "process"
    if backend == "postgres":
        logger.info("Using PostgreSQL advisory locks")
        return PostgresAdvisoryLockManager(settings, session_getter)
    logger.info("Using in-process advisory locks")
    return InProcessLockManager(settings)


def retry_on_lock_timeout(operation: Callable, *, settings: LockSettings, sleep: Callable = time.sleep):
    """
    Caller-side retry policy: re-run ``operation`` while it fails with LockTimeout,
    up to ``settings.retry_attempts`` attempts with (optionally exponential) backoff.
    """
    attempts = max(1, settings.retry_attempts)
    delay = settings.retry_delay
    result = None
    for attempt in range(1, attempts + 1):
        result = operation()
        if result.success or not isinstance(result.error, LockTimeout):
            return result
        if attempt < attempts:
            logger.info("Lock busy, retrying in %.2fs (attempt %s/%s)", delay, attempt, attempts)
            sleep(delay)
            if settings.retry_backoff:
                delay *= 2
    return result
