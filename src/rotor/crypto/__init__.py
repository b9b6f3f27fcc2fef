"""Proving system interface and backends"""

from rotor.crypto.proving import (
    PUBLIC_INPUT_COUNT,
    PublicInputs,
    PrivateInputs,
    Witness,
    ProvingSystem,
)

from rotor.crypto.local_backend import LocalProvingSystem
from rotor.crypto.nargo_backend import NargoProvingSystem

__all__ = [
    'PUBLIC_INPUT_COUNT',
    'PublicInputs',
    'PrivateInputs',
    'Witness',
    'ProvingSystem',
    'LocalProvingSystem',
    'NargoProvingSystem',
]
