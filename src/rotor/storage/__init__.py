"""Storage layer for persistent data."""

from rotor.storage.database import (
    DatabaseManager,
    DepositRecord,
    DepositState,
    WithdrawalLogRecord,
    Base,
    get_db_manager,
    reset_db_manager,
)

__all__ = [
    "DatabaseManager",
    "DepositRecord",
    "DepositState",
    "WithdrawalLogRecord",
    "Base",
    "get_db_manager",
    "reset_db_manager",
]
