"""Integration tests for the complete deposit -> prove -> withdraw flow."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from stellar_sdk import Keypair

from rotor.api.routes import RelayerServices, app, get_services
from rotor.config import Settings
from rotor.core.commitment import CommitmentScheme
from rotor.core.deposit import DepositSaga
from rotor.core.merkle_tree import TREE_DEPTH, MerkleAccumulator, TreeConfig
from rotor.core.prover import WithdrawalProver
from rotor.core.withdrawal import WithdrawalOrchestrator, WithdrawalRequest
from rotor.ledger.memory import InMemoryLedger
from rotor.storage import DepositState
from rotor.exceptions import InputShapeError, LedgerRejectedError, RecipientBindingError


@pytest.fixture(scope="module")
def pool_config(proving_system):
    """Full-depth tree configuration."""
    return TreeConfig.build(proving_system.hash_pair)


@pytest.fixture
def pool(pool_config):
    return InMemoryLedger(pool_config)


@pytest.fixture
def saga(pool, db_manager):
    return DepositSaga(pool, db_manager, poll_interval=0)


@pytest.fixture
def prover(proving_system):
    prover = WithdrawalProver(proving_system)
    yield prover
    prover.close()


def _deposit(pool, saga, scheme, amount):
    depositor = Keypair.random().public_key
    pool.mint(depositor, amount)
    note = scheme.generate(amount)
    record = saga.execute(depositor, note)
    assert record.state == DepositState.COMMITTED
    return note, record.leaf_index


def _request(prover, pool, pool_config, note, leaf_index, recipient):
    """What a wallet does: rebuild the tree from ledger leaves, prove, serialize."""
    tree = MerkleAccumulator.from_leaves(pool_config, pool.leaves)
    assert tree.root == pool.get_latest_root()
    body = prover.prepare(note, tree, leaf_index, recipient).to_request(recipient)
    return WithdrawalRequest(bytes(body["proof"]), body["publicInputs"], body["recipient"])


class TestCompletePoolWorkflow:
    """Tests for complete pool workflows."""

    def test_single_deposit_and_withdrawal(self, proving_system, pool, pool_config, saga, prover):
        assert pool_config.depth == TREE_DEPTH
        scheme = CommitmentScheme(proving_system)
        note, leaf_index = _deposit(pool, saga, scheme, 10_000_000)
        assert leaf_index == 0

        recipient = Keypair.random().public_key
        request = _request(prover, pool, pool_config, note, leaf_index, recipient)
        result = WithdrawalOrchestrator(proving_system, pool, poll_interval=0).withdraw(request)

        assert result.amount == "1.0000000"
        assert pool.balance_of(recipient) == 10_000_000
        assert pool.pool_balance == 0
        assert pool.is_spent(note.nullifier_hash)

    def test_double_spend_prevention(self, proving_system, pool, pool_config, saga, prover):
        scheme = CommitmentScheme(proving_system)
        note, leaf_index = _deposit(pool, saga, scheme, 10_000_000)
        _deposit(pool, saga, scheme, 10_000_000)
        orchestrator = WithdrawalOrchestrator(proving_system, pool, poll_interval=0)

        recipient = Keypair.random().public_key
        orchestrator.withdraw(_request(prover, pool, pool_config, note, leaf_index, recipient))

        # A fresh proof for another recipient reuses the same nullifier hash.
        other = Keypair.random().public_key
        with pytest.raises(LedgerRejectedError, match="nullifier already spent"):
            orchestrator.withdraw(_request(prover, pool, pool_config, note, leaf_index, other))
        assert pool.balance_of(other) == 0
        assert pool.pool_balance == 10_000_000

    def test_multiple_depositors(self, proving_system, pool, pool_config, saga, prover):
        scheme = CommitmentScheme(proving_system)
        deposits = [_deposit(pool, saga, scheme, 10_000_000 * (i + 1)) for i in range(4)]
        assert [index for _, index in deposits] == [0, 1, 2, 3]

        orchestrator = WithdrawalOrchestrator(proving_system, pool, poll_interval=0)
        for note, leaf_index in reversed(deposits):
            recipient = Keypair.random().public_key
            orchestrator.withdraw(_request(prover, pool, pool_config, note, leaf_index, recipient))
            assert pool.balance_of(recipient) == note.amount
        assert pool.pool_balance == 0

    def test_proof_against_older_root(self, proving_system, pool, pool_config, saga, prover):
        """Test that a proof made before later deposits still redeems."""
        scheme = CommitmentScheme(proving_system)
        note, leaf_index = _deposit(pool, saga, scheme, 10_000_000)
        recipient = Keypair.random().public_key
        request = _request(prover, pool, pool_config, note, leaf_index, recipient)

        for _ in range(3):
            _deposit(pool, saga, scheme, 1_000_000)
        WithdrawalOrchestrator(proving_system, pool, poll_interval=0).withdraw(request)
        assert pool.balance_of(recipient) == 10_000_000

    def test_wrong_recipient_never_reaches_ledger(self, proving_system, pool, pool_config, saga, prover):
        scheme = CommitmentScheme(proving_system)
        note, leaf_index = _deposit(pool, saga, scheme, 10_000_000)
        request = _request(prover, pool, pool_config, note, leaf_index, Keypair.random().public_key)

        attacker = Keypair.random().public_key
        with pytest.raises(RecipientBindingError):
            WithdrawalOrchestrator(proving_system, pool).withdraw(
                WithdrawalRequest(request.proof, request.public_inputs, attacker)
            )
        assert pool.withdraw_calls == 0
        assert not pool.is_spent(note.nullifier_hash)

    def test_truncated_inputs_never_verified(self, proving_system, pool, pool_config, saga, prover):
        scheme = CommitmentScheme(proving_system)
        note, leaf_index = _deposit(pool, saga, scheme, 10_000_000)
        recipient = Keypair.random().public_key
        request = _request(prover, pool, pool_config, note, leaf_index, recipient)

        verifier = MagicMock(wraps=proving_system)
        with pytest.raises(InputShapeError):
            WithdrawalOrchestrator(verifier, pool).withdraw(
                WithdrawalRequest(request.proof, request.public_inputs[:3], recipient)
            )
        verifier.verify.assert_not_called()
        assert pool.withdraw_calls == 0


class TestRelayerWorkflow:
    """Tests for the same flow through the HTTP relayer."""

    @pytest.fixture
    def client(self, proving_system, pool, db_manager):
        settings = Settings(ledger_backend="memory", proving_backend="local", _env_file=None)
        services = RelayerServices(settings, proving_system, pool, db_manager)
        app.dependency_overrides[get_services] = lambda: services
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_withdraw_over_http(self, client, proving_system, pool, pool_config, saga, prover):
        scheme = CommitmentScheme(proving_system)
        note, leaf_index = _deposit(pool, saga, scheme, 10_000_000)

        root = client.get("/root").json()["root"]
        tree = MerkleAccumulator.from_leaves(pool_config, pool.leaves)
        assert root == tree.get_state()["root"]

        recipient = Keypair.random().public_key
        body = prover.prepare(note, tree, leaf_index, recipient).to_request(recipient)

        assert client.post("/verify", json={"proof": body["proof"], "publicInputs": body["publicInputs"]}).json()[
            "valid"
        ]
        response = client.post("/withdraw", json=body)
        assert response.status_code == 200
        data = response.json()
        assert data["amount"] == "1.0000000"

        status = client.get(f"/tx/{data['txHash']}").json()
        assert status["status"] == "confirmed"

        replay = client.post("/withdraw", json=body)
        assert replay.status_code == 502
        assert pool.balance_of(recipient) == 10_000_000
