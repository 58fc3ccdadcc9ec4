"""
PDO Trace test suite.

Tests are organized by component:
- test_code_generator.py / test_lot_registry.py: production
- test_ledger.py / test_allocator.py / test_locks.py: stock state and concurrency primitives
- test_shipments.py / test_treatment_recall.py / test_returns_disposal.py: coordinator operations
- test_history.py / test_end_to_end.py: audit trail and full supply-chain flows
"""
