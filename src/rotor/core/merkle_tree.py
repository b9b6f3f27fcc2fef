"""Incremental Merkle accumulator for note commitments."""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from rotor.core.field import FieldCodec
from rotor.exceptions import CapacityExceededError, InvalidLeafIndexError

HashPair = Callable[[bytes, bytes], bytes]

TREE_DEPTH = 20
MAX_DEPTH = 32

# keccak256("cyfrin") mod p, the empty leaf shared with the on-ledger tree
ZERO_LEAF = bytes.fromhex("0d823319708ab99ec915efd4f7e03d11ca1790918e8f04cd14100aceca2aa9ff")


@dataclass(frozen=True)
class TreeConfig:
    """
    Immutable tree parameters.

    ``empty_hashes[i]`` is the root of an all-empty subtree of height ``i``:

        empty_hashes[0]   = zero leaf
        empty_hashes[i+1] = H2(empty_hashes[i], empty_hashes[i])

    so ``empty_hashes[depth]`` is the root of an empty tree.
    """

    depth: int
    hash_pair: HashPair
    empty_hashes: Tuple[bytes, ...]

    @classmethod
    def build(
        cls, hash_pair: HashPair, depth: int = TREE_DEPTH, zero_leaf: bytes = ZERO_LEAF
    ) -> "TreeConfig":
        if depth < 1 or depth > MAX_DEPTH:
            raise ValueError(f"Tree depth must be between 1 and {MAX_DEPTH}")
        if not FieldCodec.is_canonical(zero_leaf):
            raise ValueError("Zero leaf must be a 32-byte field element")

        empty = [bytes(zero_leaf)]
        for _ in range(depth):
            empty.append(hash_pair(empty[-1], empty[-1]))
        return cls(depth=depth, hash_pair=hash_pair, empty_hashes=tuple(empty))

    @property
    def capacity(self) -> int:
        return 2**self.depth


@dataclass(frozen=True)
class AuthPath:
    """
    Authentication path for one leaf.

    ``path_bits[i]`` is bit i of the leaf index: False when the node at
    level i is a left child, True when it is a right child.
    """

    leaf_index: int
    siblings: Tuple[bytes, ...]
    path_bits: Tuple[bool, ...]

    def compute_root(self, leaf: bytes, hash_pair: HashPair) -> bytes:
        """Fold ``leaf`` up through the path."""
        current = leaf
        for sibling, is_right in zip(self.siblings, self.path_bits):
            if is_right:
                current = hash_pair(sibling, current)
            else:
                current = hash_pair(current, sibling)
        return current

    def to_dict(self) -> dict:
        return {
            "leaf_index": self.leaf_index,
            "siblings": [FieldCodec.to_hex(s) for s in self.siblings],
            "path_bits": list(self.path_bits),
        }


class MerkleAccumulator:
    """
    Append-only, fixed-depth Merkle tree.

    Only non-empty subtrees are stored, keyed by (level, position). A node
    that was never written reads as the empty-subtree hash for its level, so
    a sparsely filled depth-20 tree stays small and inserting a leaf touches
    exactly ``depth`` ancestors.
    """

    def __init__(self, config: TreeConfig):
        self.config = config
        self.depth = config.depth
        self.max_leaves = config.capacity

        self.leaves: List[bytes] = []
        self.nodes: Dict[Tuple[int, int], bytes] = {}

    @classmethod
    def from_leaves(cls, config: TreeConfig, leaves: Iterable[bytes]) -> "MerkleAccumulator":
        """Rebuild an accumulator from an ordered leaf sequence."""
        tree = cls(config)
        for leaf in leaves:
            tree.insert(leaf)
        return tree

    def _node(self, level: int, position: int) -> bytes:
        return self.nodes.get((level, position), self.config.empty_hashes[level])

    def insert(self, leaf: bytes) -> int:
        """
        Append a commitment and return its leaf index.

        Raises:
            ValueError: If leaf is not a canonical 32-byte field element
            CapacityExceededError: If the tree is full
        """
        if not FieldCodec.is_canonical(leaf):
            raise ValueError("Leaf must be a 32-byte field element below the modulus")

        if len(self.leaves) >= self.max_leaves:
            raise CapacityExceededError(f"Tree is full (max {self.max_leaves} leaves)")

        leaf_index = len(self.leaves)
        self.leaves.append(bytes(leaf))
        self.nodes[(0, leaf_index)] = bytes(leaf)

        position = leaf_index
        current = bytes(leaf)
        for level in range(self.depth):
            if position % 2 == 0:
                current = self.config.hash_pair(current, self._node(level, position + 1))
            else:
                current = self.config.hash_pair(self._node(level, position - 1), current)
            position >>= 1
            self.nodes[(level + 1, position)] = current

        return leaf_index

    def current_root(self) -> bytes:
        """Root of the tree for the leaves inserted so far."""
        return self._node(self.depth, 0)

    @property
    def root(self) -> bytes:
        """Get the current Merkle root hash."""
        return self.current_root()

    def auth_path(self, leaf_index: int) -> AuthPath:
        """
        Authentication path for an inserted leaf.

        Raises:
            InvalidLeafIndexError: If no leaf was inserted at ``leaf_index``
        """
        if isinstance(leaf_index, bool) or not isinstance(leaf_index, int):
            raise InvalidLeafIndexError(f"Invalid leaf index: {leaf_index!r}")
        if leaf_index < 0 or leaf_index >= len(self.leaves):
            raise InvalidLeafIndexError(f"Invalid leaf index: {leaf_index}")

        siblings = []
        path_bits = []
        position = leaf_index
        for level in range(self.depth):
            siblings.append(self._node(level, position ^ 1))
            path_bits.append(bool(position & 1))
            position >>= 1

        return AuthPath(leaf_index=leaf_index, siblings=tuple(siblings), path_bits=tuple(path_bits))

    def verify_path(self, leaf: bytes, path: AuthPath, root: Optional[bytes] = None) -> bool:
        """
        Check that ``leaf`` folds through ``path`` to ``root`` (default: current root).
        """
        if not FieldCodec.is_canonical(leaf):
            return False
        if len(path.siblings) != self.depth or len(path.path_bits) != self.depth:
            return False
        expected = self.current_root() if root is None else root
        return path.compute_root(leaf, self.config.hash_pair) == expected

    @property
    def is_full(self) -> bool:
        return len(self.leaves) >= self.max_leaves

    def get_state(self) -> dict:
        """
        Get the current state of the tree for serialization.

        Returns:
            dict: Tree state including depth, leaf count and root
        """
        return {
            "depth": self.depth,
            "max_leaves": self.max_leaves,
            "num_leaves": len(self.leaves),
            "leaves": [FieldCodec.to_hex(leaf) for leaf in self.leaves],
            "root": FieldCodec.to_hex(self.root),
        }

    def __len__(self) -> int:
        """Return the number of leaves in the tree."""
        return len(self.leaves)

    def __repr__(self) -> str:
        """String representation of the tree."""
        return (
            f"MerkleAccumulator(depth={self.depth}, "
            f"leaves={len(self.leaves)}/{self.max_leaves}, "
            f"root={self.root.hex()[:16]}...)"
        )


def fold_path(leaf: bytes, siblings: Sequence[bytes], path_bits: Sequence[bool], hash_pair: HashPair) -> bytes:
    """Fold a leaf through raw sibling and bit sequences (circuit-side view)."""
    if len(siblings) != len(path_bits):
        raise ValueError("Siblings and path bits must have the same length")
    path = AuthPath(leaf_index=-1, siblings=tuple(siblings), path_bits=tuple(path_bits))
    return path.compute_root(leaf, hash_pair)
