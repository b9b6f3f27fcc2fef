"""Pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from stellar_sdk import Keypair

from rotor.core.commitment import CommitmentScheme
from rotor.core.merkle_tree import TreeConfig
from rotor.crypto.local_backend import LocalProvingSystem
from rotor.ledger.memory import InMemoryLedger
from rotor.storage import DatabaseManager

TEST_TREE_DEPTH = 8


@pytest.fixture(scope="session")
def proving_system():
    """Deterministic local proving backend."""
    return LocalProvingSystem.from_seed(b"rotor-tests")


@pytest.fixture(scope="session")
def tree_config(proving_system):
    """Small tree for fast tests."""
    return TreeConfig.build(proving_system.hash_pair, depth=TEST_TREE_DEPTH)


@pytest.fixture
def scheme(proving_system):
    """Commitment scheme over the test backend."""
    return CommitmentScheme(proving_system)


@pytest.fixture
def ledger(tree_config):
    """Fresh in-memory ledger."""
    return InMemoryLedger(tree_config)


@pytest.fixture
def recipient():
    """A valid Stellar account id."""
    return Keypair.random().public_key


@pytest.fixture
def depositor():
    """A valid Stellar account id."""
    return Keypair.random().public_key


@pytest.fixture
def db_manager(tmp_path):
    """Database manager on a temporary SQLite file."""
    db = DatabaseManager(f"sqlite:///{tmp_path / 'test.db'}")
    db.create_tables()
    yield db
    db.engine.dispose()


@pytest.fixture
def test_data():
    """Fixture providing test data."""
    return {
        "sample_amount": 10_000_000,
        "sample_display_amount": "1.0000000",
        "sample_tree_depth": TEST_TREE_DEPTH,
    }
