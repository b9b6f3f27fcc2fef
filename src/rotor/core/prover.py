"""Client-side proof generation for withdrawals."""

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Optional

from rotor.core.commitment import Note
from rotor.core.field import FieldCodec
from rotor.core.merkle_tree import AuthPath, MerkleAccumulator
from rotor.crypto.proving import PrivateInputs, ProvingSystem, PublicInputs
from rotor.exceptions import InvalidLeafIndexError, ProvingTimeoutError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProofBundle:
    """A proof together with the public inputs it was generated for."""

    proof: bytes
    public_inputs: PublicInputs

    def to_request(self, recipient: str) -> dict:
        """JSON body for the relayer's ``POST /withdraw``."""
        return {
            "proof": list(self.proof),
            "publicInputs": self.public_inputs.to_hex_list(),
            "recipient": recipient,
        }


class WithdrawalProver:
    """
    Blocking ``prove(note, path)`` with an explicit deadline.

    Circuit execution and proving run on a worker pool so that a slow backend
    can be abandoned after ``timeout`` seconds.
    """

    def __init__(
        self,
        proving_system: ProvingSystem,
        executor: Optional[Executor] = None,
        timeout: Optional[float] = None,
    ):
        self.proving_system = proving_system
        self.timeout = timeout
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="rotor-prover")

    def _run(self, public_inputs: PublicInputs, private_inputs: PrivateInputs) -> bytes:
        witness = self.proving_system.execute(public_inputs, private_inputs)
        return self.proving_system.prove(witness)

    def prove(
        self,
        note: Note,
        path: AuthPath,
        root: bytes,
        recipient: str,
        timeout: Optional[float] = None,
    ) -> ProofBundle:
        """
        Generate a withdrawal proof for ``note`` paying ``recipient``.

        Args:
            note: The note being redeemed
            path: Authentication path of the note's commitment
            root: Tree root the path folds to
            recipient: Stellar address the proof binds to
            timeout: Seconds to wait; defaults to the prover's timeout

        Returns:
            ProofBundle: Proof and public inputs

        Raises:
            InvalidAddressError: If recipient cannot be decoded
            ConstraintViolationError: If the note, path and root are inconsistent
            ProvingTimeoutError: If proving exceeds the deadline
        """
        public_inputs = PublicInputs(
            root=root,
            nullifier_hash=note.nullifier_hash,
            recipient_field=FieldCodec.address_to_field(recipient),
            amount_field=note.amount_field,
        )
        private_inputs = PrivateInputs(
            nullifier=note.nullifier,
            secret=note.secret,
            siblings=tuple(path.siblings),
            path_bits=tuple(path.path_bits),
        )

        deadline = self.timeout if timeout is None else timeout
        future = self._executor.submit(self._run, public_inputs, private_inputs)
        try:
            proof = future.result(timeout=deadline)
        except FutureTimeoutError as e:
            future.cancel()
            raise ProvingTimeoutError(f"Proof generation exceeded {deadline}s") from e

        logger.info("Generated %d-byte withdrawal proof for leaf %d", len(proof), path.leaf_index)
        return ProofBundle(proof=proof, public_inputs=public_inputs)

    def prepare(
        self,
        note: Note,
        accumulator: MerkleAccumulator,
        leaf_index: int,
        recipient: str,
        timeout: Optional[float] = None,
    ) -> ProofBundle:
        """
        Prove against the accumulator's current root.

        Raises:
            InvalidLeafIndexError: If the leaf does not hold the note's commitment
        """
        path = accumulator.auth_path(leaf_index)
        if accumulator.leaves[leaf_index] != note.commitment:
            raise InvalidLeafIndexError(f"Leaf {leaf_index} does not hold this note's commitment")
        return self.prove(note, path, accumulator.current_root(), recipient, timeout=timeout)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)
