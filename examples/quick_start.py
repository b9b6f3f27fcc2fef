#!/usr/bin/env python3
"""
Quick start guide for the Rotor privacy pool.

Runs a complete deposit -> prove -> withdraw cycle against the in-memory
ledger and the local proving backend.
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from stellar_sdk import Keypair

from rotor.core.commitment import CommitmentScheme
from rotor.core.deposit import DepositSaga
from rotor.core.merkle_tree import MerkleAccumulator, TreeConfig
from rotor.core.prover import WithdrawalProver
from rotor.core.withdrawal import WithdrawalOrchestrator, WithdrawalRequest
from rotor.crypto.local_backend import LocalProvingSystem
from rotor.ledger.memory import InMemoryLedger
from rotor.storage import DatabaseManager
from rotor.exceptions import LedgerRejectedError


def main():
    """Run a simple example of the Rotor pool."""

    print("=" * 70)
    print("ROTOR QUICK START EXAMPLE")
    print("=" * 70)
    print()

    # Step 1: Set up the pool
    print("Step 1: Initialize proving backend, ledger and storage")
    print("-" * 70)
    proving = LocalProvingSystem.from_seed(b"quick-start")
    config = TreeConfig.build(proving.hash_pair)
    ledger = InMemoryLedger(config)
    db = DatabaseManager("sqlite:///:memory:")
    db.create_tables()
    print(f"✓ Depth-{config.depth} tree (supports {config.capacity} deposits)")
    print()

    # Step 2: Alice deposits 1 XLM
    print("Step 2: Alice deposits 1.0000000 XLM")
    print("-" * 70)
    alice = Keypair.random().public_key
    ledger.mint(alice, 50_000_000)
    scheme = CommitmentScheme(proving)
    note = scheme.generate(10_000_000)
    record = DepositSaga(ledger, db, poll_interval=0).execute(alice, note)
    print(f"✓ Deposit {record.state.value} at leaf {record.leaf_index}")
    print(f"  Commitment: {record.commitment[:34]}...")
    print()

    # Step 3: Alice hands the note to Bob, who proves
    print("Step 3: Bob proves knowledge of the note")
    print("-" * 70)
    bob = Keypair.random().public_key
    accumulator = MerkleAccumulator.from_leaves(config, ledger.leaves)
    prover = WithdrawalProver(proving)
    bundle = prover.prepare(note, accumulator, record.leaf_index, bob)
    prover.close()
    print(f"✓ Proof generated ({len(bundle.proof)} bytes)")
    print(f"  Root: {bundle.public_inputs.to_hex_list()[0][:34]}...")
    print()

    # Step 4: Relayer redeems
    print("Step 4: Relayer verifies and redeems")
    print("-" * 70)
    orchestrator = WithdrawalOrchestrator(proving, ledger, poll_interval=0)
    body = bundle.to_request(bob)
    result = orchestrator.withdraw(
        WithdrawalRequest(bytes(body["proof"]), body["publicInputs"], body["recipient"])
    )
    print(f"✓ Withdrawal of {result.amount} XLM confirmed")
    print(f"  Tx: {result.tx_hash}")
    print(f"  Bob's balance: {ledger.balance_of(bob)}")
    print()

    # Step 5: Replay is refused
    print("Step 5: Replaying the same proof")
    print("-" * 70)
    try:
        orchestrator.withdraw(
            WithdrawalRequest(bytes(body["proof"]), body["publicInputs"], body["recipient"])
        )
    except LedgerRejectedError as e:
        print(f"✓ Rejected: {e}")
    print()


if __name__ == "__main__":
    main()
