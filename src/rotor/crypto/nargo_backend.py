"""Noir/Barretenberg proving backend driven through the ``nargo`` and ``bb`` CLIs.

Layout expected under ``circuit_dir`` (a Nargo package whose ``main`` takes
``root, nullifier_hash, recipient, amount`` as public inputs and
``nullifier, secret, merkle_proof, is_even`` as private inputs)::

    Nargo.toml
    src/main.nr
    target/<name>.json      (compiled by ``nargo compile``)
    target/vk               (written by ``bb write_vk``)

Hashes are computed by small helper circuits generated next to the main
circuit, one per arity, so they are bit-for-bit the circuit's Poseidon2.
"""

import logging
import os
import re
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rotor.core.field import FieldCodec
from rotor.crypto.proving import PrivateInputs, ProvingSystem, PublicInputs, Witness
from rotor.exceptions import ConstraintViolationError, ProvingError

logger = logging.getLogger(__name__)

_OUTPUT_PATTERN = re.compile(r"Circuit output:\s*(0x[0-9a-fA-F]+)")
_PACKAGE_PATTERN = re.compile(r'^\s*name\s*=\s*"([^"]+)"', re.MULTILINE)

HELPER_NARGO_TOML = """[package]
name = "rotor_hash_{arity}"
type = "bin"
authors = [""]

[dependencies]
"""

HELPER_MAIN_NR = """use std::hash::poseidon2::Poseidon2;

fn main(inputs: [Field; {arity}]) -> pub Field {{
    Poseidon2::hash(inputs, {arity})
}}
"""


def _toml_field(value: bytes) -> str:
    return f'"{FieldCodec.to_hex(value)}"'


def _toml_array(values: Sequence[str]) -> str:
    return "[" + ", ".join(values) + "]"


class NargoProvingSystem(ProvingSystem):
    """
    Drives a compiled Noir circuit through subprocess calls.

    Args:
        circuit_dir: Path of the withdrawal circuit's Nargo package
        nargo_bin: ``nargo`` executable
        bb_bin: ``bb`` (Barretenberg) executable
        timeout: Per-command timeout in seconds
    """

    def __init__(
        self,
        circuit_dir: str,
        nargo_bin: str = "nargo",
        bb_bin: str = "bb",
        timeout: float = 300.0,
    ):
        self.circuit_dir = Path(circuit_dir)
        self.nargo_bin = nargo_bin
        self.bb_bin = bb_bin
        self.timeout = timeout

        self._helpers: Dict[int, Path] = {}
        self._helper_lock = threading.Lock()
        self._hash_cache: Dict[tuple, bytes] = {}

    @property
    def package_name(self) -> str:
        manifest = self.circuit_dir / "Nargo.toml"
        try:
            match = _PACKAGE_PATTERN.search(manifest.read_text())
        except OSError as e:
            raise ProvingError(f"Cannot read {manifest}: {e}") from e
        if not match:
            raise ProvingError(f"No package name in {manifest}")
        return match.group(1)

    @property
    def target_dir(self) -> Path:
        return self.circuit_dir / "target"

    def _run(self, args: List[str], cwd: Optional[Path] = None) -> str:
        logger.debug("Running %s", " ".join(args))
        try:
            result = subprocess.run(
                args,
                cwd=str(cwd) if cwd else None,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ProvingError(f"Executable not found: {args[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise ProvingError(f"{args[0]} {args[1]} timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            output = (e.stdout or "") + (e.stderr or "")
            raise ProvingError(f"{args[0]} {args[1]} failed: {output.strip()}") from e
        return (result.stdout or "") + (result.stderr or "")

    def _helper_dir(self, arity: int) -> Path:
        with self._helper_lock:
            if arity in self._helpers:
                return self._helpers[arity]

            helper_dir = self.circuit_dir.parent / f".rotor_hash_{arity}"
            (helper_dir / "src").mkdir(parents=True, exist_ok=True)
            (helper_dir / "Nargo.toml").write_text(HELPER_NARGO_TOML.format(arity=arity))
            (helper_dir / "src" / "main.nr").write_text(HELPER_MAIN_NR.format(arity=arity))
            self._run([self.nargo_bin, "compile"], cwd=helper_dir)

            self._helpers[arity] = helper_dir
            return helper_dir

    def hash(self, inputs: Sequence[bytes]) -> bytes:
        if not inputs:
            raise ValueError("At least one input is required")
        for item in inputs:
            if not FieldCodec.is_canonical(item):
                raise ValueError("Hash inputs must be canonical field elements")

        key = tuple(bytes(item) for item in inputs)
        cached = self._hash_cache.get(key)
        if cached is not None:
            return cached

        helper_dir = self._helper_dir(len(inputs))
        prover_toml = helper_dir / f"Prover_{threading.get_ident()}.toml"
        prover_toml.write_text(
            f"inputs = {_toml_array([_toml_field(item) for item in inputs])}\n"
        )
        try:
            output = self._run(
                [self.nargo_bin, "execute", "--prover-name", prover_toml.stem],
                cwd=helper_dir,
            )
        finally:
            prover_toml.unlink()

        match = _OUTPUT_PATTERN.search(output)
        if not match:
            raise ProvingError(f"Could not parse hash helper output: {output.strip()}")
        digest = FieldCodec.from_hex(match.group(1))
        self._hash_cache[key] = digest
        return digest

    def _prover_toml(self, public_inputs: PublicInputs, private_inputs: PrivateInputs) -> str:
        # The circuit names the bit array after the "current node is even" view,
        # the inverse of path_bits.
        is_even = [str(not bit).lower() for bit in private_inputs.path_bits]
        lines = [
            f"root = {_toml_field(public_inputs.root)}",
            f"nullifier_hash = {_toml_field(public_inputs.nullifier_hash)}",
            f"recipient = {_toml_field(public_inputs.recipient_field)}",
            f"amount = {_toml_field(public_inputs.amount_field)}",
            f"nullifier = {_toml_field(private_inputs.nullifier)}",
            f"secret = {_toml_field(private_inputs.secret)}",
            f"merkle_proof = {_toml_array([_toml_field(s) for s in private_inputs.siblings])}",
            f"is_even = {_toml_array(is_even)}",
        ]
        return "\n".join(lines) + "\n"

    def execute(self, public_inputs: PublicInputs, private_inputs: PrivateInputs) -> Witness:
        """
        Solve the witness with ``nargo execute``.

        Raises:
            ConstraintViolationError: If nargo reports an unsatisfied constraint
            ProvingError: For any other tool failure
        """
        witness_name = f"rotor_{os.getpid()}_{threading.get_ident()}"
        prover_toml = self.circuit_dir / f"{witness_name}.toml"
        prover_toml.write_text(self._prover_toml(public_inputs, private_inputs))
        try:
            self._run(
                [self.nargo_bin, "execute", "--prover-name", witness_name, witness_name],
                cwd=self.circuit_dir,
            )
        except ProvingError as e:
            if "constraint" in str(e).lower() or "assert" in str(e).lower():
                raise ConstraintViolationError(str(e)) from e
            raise
        finally:
            prover_toml.unlink()

        witness_path = self.target_dir / f"{witness_name}.gz"
        try:
            data = witness_path.read_bytes()
        except OSError as e:
            raise ProvingError(f"Witness not written: {witness_path}") from e
        finally:
            if witness_path.exists():
                witness_path.unlink()
        return Witness(public_inputs=public_inputs, data=data)

    def prove(self, witness: Witness) -> bytes:
        bytecode = self.target_dir / f"{self.package_name}.json"
        with tempfile.TemporaryDirectory(prefix="rotor-prove-") as workdir:
            witness_path = Path(workdir) / "witness.gz"
            witness_path.write_bytes(witness.data)
            self._run(
                [self.bb_bin, "prove", "-b", str(bytecode), "-w", str(witness_path), "-o", workdir]
            )
            proof_path = Path(workdir) / "proof"
            if not proof_path.exists():
                raise ProvingError("bb prove did not write a proof")
            return proof_path.read_bytes()

    def verify(self, proof: bytes, public_inputs: PublicInputs) -> bool:
        """
        Check a proof with ``bb verify``. Any non-zero exit means invalid.
        """
        if not isinstance(proof, (bytes, bytearray)) or not proof:
            return False
        with tempfile.TemporaryDirectory(prefix="rotor-verify-") as workdir:
            proof_path = Path(workdir) / "proof"
            inputs_path = Path(workdir) / "public_inputs"
            proof_path.write_bytes(bytes(proof))
            inputs_path.write_bytes(b"".join(public_inputs.as_list()))
            try:
                self._run(
                    [
                        self.bb_bin,
                        "verify",
                        "-k",
                        str(self.target_dir / "vk"),
                        "-p",
                        str(proof_path),
                        "-i",
                        str(inputs_path),
                    ]
                )
            except ProvingError as e:
                if not isinstance(e.__cause__, subprocess.CalledProcessError):
                    raise
                logger.info("Proof rejected by bb verify: %s", e)
                return False
        return True
