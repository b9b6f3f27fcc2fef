"""Ledger gateway interface and adapters"""

from rotor.ledger.gateway import (
    LedgerGateway,
    TxHandle,
    TxOutcome,
    TxStatus,
)
from rotor.ledger.memory import InMemoryLedger, ROOT_HISTORY_SIZE
from rotor.ledger.soroban import SorobanLedgerGateway

__all__ = [
    'LedgerGateway',
    'TxHandle',
    'TxOutcome',
    'TxStatus',
    'InMemoryLedger',
    'ROOT_HISTORY_SIZE',
    'SorobanLedgerGateway',
]
