"""
Traceability Service - Canonical Entry Point

Every change to a virtual code's owner or status goes through the
TransactionCoordinator exposed here. Reads (stock counts, FIFO listings,
history) go through the ledger and HistoryService.
"""

from sqlalchemy.engine import make_url

from ...extensions import db
from ...rules import TraceabilityRules
from ...utils.timezone_utils import TimezoneUtils
from ._allocator import FifoAllocator
from ._codes import VirtualCodeGenerator, derive_code
from ._coordinator import TransactionCoordinator
from ._history import HistoryLogger, HistoryService
from ._ledger import ALLOWED_TRANSITIONS, InventoryLedger, OwnerUpdate, can_transition
from ._locks import (
    InProcessLockManager,
    LockDomain,
    LockManager,
    PostgresAdvisoryLockManager,
    build_lock_manager,
    retry_on_lock_timeout,
)
from ._lots import LotRegistry, add_months, format_lot_number
from ._recall import RecallEligibility, RecallEligibilityChecker
from ._results import OperationResult, ProductLine

__all__ = [
    'TraceabilityEngine',
    'build_engine',
    'TransactionCoordinator',
    'OperationResult',
    'ProductLine',
    'InventoryLedger',
    'OwnerUpdate',
    'ALLOWED_TRANSITIONS',
    'can_transition',
    'FifoAllocator',
    'LotRegistry',
    'VirtualCodeGenerator',
    'derive_code',
    'add_months',
    'format_lot_number',
    'HistoryLogger',
    'HistoryService',
    'RecallEligibility',
    'RecallEligibilityChecker',
    'LockDomain',
    'LockManager',
    'InProcessLockManager',
    'PostgresAdvisoryLockManager',
    'build_lock_manager',
    'retry_on_lock_timeout',
]


class TraceabilityEngine:
    """Rules, lock manager and coordinator wired together for one app."""

    def __init__(self, rules: TraceabilityRules, locks: LockManager, clock=None):
        self.rules = rules
        self.locks = locks
        self.clock = clock or TimezoneUtils.utc_now
        self.coordinator = TransactionCoordinator(rules, locks, clock=self.clock)
        self.ledger = self.coordinator.ledger
        self.history = HistoryService()

    def with_clock(self, clock) -> "TraceabilityEngine":
        """Same rules and locks, different time source."""
        return TraceabilityEngine(self.rules, self.locks, clock=clock)

    def retry(self, operation):
        """Run ``operation`` (a zero-arg callable returning OperationResult) with the configured lock retry policy."""
        return retry_on_lock_timeout(operation, settings=self.rules.locks)


def build_engine(app, clock=None) -> TraceabilityEngine:
    rules = TraceabilityRules.from_config(app.config)
    dialect = make_url(app.config["SQLALCHEMY_DATABASE_URI"]).get_backend_name()
    locks = build_lock_manager(rules.locks, dialect, lambda: db.session)
    return TraceabilityEngine(rules, locks, clock=clock)
