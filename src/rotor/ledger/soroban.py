"""Stellar Soroban adapter for the pool contract."""

import logging
from typing import Any, Dict, List, Optional

from stellar_sdk import Keypair, SorobanServer, TransactionBuilder, scval
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.exceptions import (
    BaseRequestError,
    PrepareTransactionException,
    SdkError,
    SorobanRpcErrorResponse,
)
from stellar_sdk.soroban_rpc import GetTransactionStatus, SendTransactionStatus

from rotor.core.field import FieldCodec, base_address
from rotor.ledger.gateway import LedgerGateway, TxHandle, TxOutcome, TxStatus
from rotor.exceptions import ConfigurationError, LedgerRejectedError, RangeError

logger = logging.getLogger(__name__)

DEFAULT_BASE_FEE = 1_000_000
DEFAULT_TX_TIMEOUT = 180

# Token and pool amounts are i128 on the contract side.
I128_MAX = 2**127 - 1


def _return_value(result_meta_xdr: Optional[str]) -> Any:
    """Native return value of a contract call from its transaction meta."""
    if not result_meta_xdr:
        return None
    meta = stellar_xdr.TransactionMeta.from_xdr(result_meta_xdr)
    for version in (getattr(meta, "v4", None), getattr(meta, "v3", None)):
        soroban_meta = getattr(version, "soroban_meta", None) if version else None
        if soroban_meta is not None and soroban_meta.return_value is not None:
            return scval.to_native(soroban_meta.return_value)
    return None


class SorobanLedgerGateway(LedgerGateway):
    """
    LedgerGateway backed by the pool contract on Soroban.

    Write calls are built, simulated (``prepare_transaction``), signed and
    sent; reads are simulation only. ``withdraw`` is signed by the relayer,
    which is the contract's authorised caller. ``fund`` and ``deposit`` are
    signed by the depositor, whose key must be registered with ``add_signer``
    unless it is the relayer itself.

    Args:
        rpc_url: Soroban RPC endpoint
        network_passphrase: Network the contract lives on
        contract_id: Pool contract id (C...)
        relayer_secret: Relayer's secret seed (S...)
        token_contract_id: Token (SAC) contract id, needed only for ``fund``
        server: Pre-built SorobanServer (tests inject a fake here)

    Raises:
        ConfigurationError: If the contract id or relayer secret is missing
    """

    def __init__(
        self,
        rpc_url: str,
        network_passphrase: str,
        contract_id: str,
        relayer_secret: str,
        token_contract_id: Optional[str] = None,
        base_fee: int = DEFAULT_BASE_FEE,
        tx_timeout: int = DEFAULT_TX_TIMEOUT,
        server: Optional[SorobanServer] = None,
    ):
        if not contract_id:
            raise ConfigurationError("Pool contract id is not configured")
        if not relayer_secret:
            raise ConfigurationError("Relayer secret is not configured")
        try:
            self.keypair = Keypair.from_secret(relayer_secret)
        except ValueError as e:
            raise ConfigurationError("Relayer secret is not a valid Stellar seed") from e

        self.contract_id = contract_id
        self.token_contract_id = token_contract_id
        self.network_passphrase = network_passphrase
        self.base_fee = base_fee
        self.tx_timeout = tx_timeout
        self.server = server if server is not None else SorobanServer(rpc_url)
        self._signers: Dict[str, Keypair] = {self.keypair.public_key: self.keypair}

    @classmethod
    def from_settings(cls, settings) -> "SorobanLedgerGateway":
        return cls(
            rpc_url=settings.stellar_rpc,
            network_passphrase=settings.network_passphrase,
            contract_id=settings.contract_id,
            relayer_secret=settings.relayer_secret.get_secret_value(),
            token_contract_id=settings.token_contract_id or None,
            base_fee=settings.base_fee,
            tx_timeout=settings.tx_timeout_seconds,
        )

    def add_signer(self, secret: str) -> str:
        """Register a depositor key; returns its public key."""
        keypair = Keypair.from_secret(secret)
        self._signers[keypair.public_key] = keypair
        return keypair.public_key

    def _signer(self, address: str) -> Keypair:
        account = base_address(address)
        keypair = self._signers.get(account)
        if keypair is None:
            raise ConfigurationError(f"No signing key registered for {account}")
        return keypair

    def _build(self, source: Keypair, contract_id: str, function_name: str, parameters: List):
        try:
            account = self.server.load_account(source.public_key)
        except SdkError as e:
            raise LedgerRejectedError(f"Cannot load account {source.public_key}: {e}") from e
        return (
            TransactionBuilder(
                source_account=account,
                network_passphrase=self.network_passphrase,
                base_fee=self.base_fee,
            )
            .append_invoke_contract_function_op(
                contract_id=contract_id,
                function_name=function_name,
                parameters=parameters,
            )
            .set_timeout(self.tx_timeout)
            .build()
        )

    def _submit(self, source: Keypair, contract_id: str, function_name: str, parameters: List) -> TxHandle:
        transaction = self._build(source, contract_id, function_name, parameters)
        try:
            prepared = self.server.prepare_transaction(transaction)
        except PrepareTransactionException as e:
            raise LedgerRejectedError(f"{function_name} simulation failed: {e}") from e
        except (BaseRequestError, SorobanRpcErrorResponse) as e:
            raise LedgerRejectedError(f"{function_name} could not be prepared: {e}") from e

        prepared.sign(source)
        try:
            response = self.server.send_transaction(prepared)
        except (BaseRequestError, SorobanRpcErrorResponse) as e:
            raise LedgerRejectedError(f"{function_name} could not be sent: {e}") from e

        if response.status in (SendTransactionStatus.ERROR, SendTransactionStatus.TRY_AGAIN_LATER):
            raise LedgerRejectedError(
                f"{function_name} submission failed: {response.error_result_xdr or response.status}",
                tx_hash=response.hash,
            )

        logger.info("Submitted %s: %s", function_name, response.hash)
        return TxHandle(tx_hash=response.hash)

    def _simulate(self, function_name: str, parameters: List) -> stellar_xdr.SCVal:
        transaction = self._build(self.keypair, self.contract_id, function_name, parameters)
        try:
            response = self.server.simulate_transaction(transaction)
        except (BaseRequestError, SorobanRpcErrorResponse) as e:
            raise LedgerRejectedError(f"{function_name} simulation failed: {e}") from e
        if response.error or not response.results:
            raise LedgerRejectedError(f"{function_name} simulation failed: {response.error}")
        return stellar_xdr.SCVal.from_xdr(response.results[0].xdr)

    def fund(self, depositor: str, amount: int) -> TxHandle:
        if not self.token_contract_id:
            raise ConfigurationError("Token contract id is not configured")
        if isinstance(amount, bool) or not isinstance(amount, int) or not 0 <= amount <= I128_MAX:
            raise LedgerRejectedError(f"Amount {amount!r} does not fit the token's i128 range")
        source = self._signer(depositor)
        return self._submit(
            source,
            self.token_contract_id,
            "transfer",
            [
                scval.to_address(source.public_key),
                scval.to_address(self.contract_id),
                scval.to_int128(amount),
            ],
        )

    def deposit(self, depositor: str, commitment: bytes) -> TxHandle:
        source = self._signer(depositor)
        return self._submit(
            source,
            self.contract_id,
            "deposit",
            [scval.to_address(source.public_key), scval.to_bytes(bytes(commitment))],
        )

    def withdraw(
        self,
        nullifier_hash: bytes,
        recipient: str,
        amount_field: bytes,
        root: Optional[bytes] = None,
    ) -> TxHandle:
        try:
            amount = FieldCodec.field_to_amount(bytes(amount_field))
        except (RangeError, ValueError) as e:
            raise LedgerRejectedError(f"Malformed withdrawal amount: {e}") from e
        if amount > I128_MAX:
            raise LedgerRejectedError(f"Amount {amount} does not fit the token's i128 range")

        # The contract keeps its own root history.
        return self._submit(
            self.keypair,
            self.contract_id,
            "withdraw",
            [
                scval.to_bytes(bytes(nullifier_hash)),
                scval.to_address(base_address(recipient)),
                scval.to_bytes(bytes(amount_field)),
            ],
        )

    def get_latest_root(self) -> bytes:
        root = scval.from_bytes(self._simulate("get_latest_root", []))
        if not FieldCodec.is_canonical(root):
            raise LedgerRejectedError("Contract returned a malformed root")
        return bytes(root)

    def is_spent(self, nullifier_hash: bytes) -> bool:
        return scval.from_bool(self._simulate("is_spent", [scval.to_bytes(bytes(nullifier_hash))]))

    def get_transaction_status(self, handle: TxHandle) -> Optional[TxOutcome]:
        try:
            response = self.server.get_transaction(handle.tx_hash)
        except (BaseRequestError, SorobanRpcErrorResponse) as e:
            logger.warning("Status query for %s failed: %s", handle.tx_hash, e)
            return None

        if response.status == GetTransactionStatus.NOT_FOUND:
            return None
        if response.status == GetTransactionStatus.SUCCESS:
            return TxOutcome(
                status=TxStatus.CONFIRMED,
                tx_hash=handle.tx_hash,
                result=_return_value(response.result_meta_xdr),
            )
        return TxOutcome(
            status=TxStatus.FAILED,
            tx_hash=handle.tx_hash,
            error=f"Contract call failed (status: {response.status.value})",
        )
