"""Tests for the Merkle accumulator."""

import pytest

from rotor.core.field import FieldCodec
from rotor.core.merkle_tree import (
    TREE_DEPTH,
    ZERO_LEAF,
    MerkleAccumulator,
    TreeConfig,
    fold_path,
)
from rotor.utils.hash import BN254_MODULUS
from rotor.exceptions import CapacityExceededError, InvalidLeafIndexError


@pytest.fixture
def merkle_tree(tree_config):
    """Create a test Merkle tree."""
    return MerkleAccumulator(tree_config)


@pytest.fixture
def leaves():
    return [FieldCodec.from_int(i + 1) for i in range(5)]


class TestTreeConfig:
    """Tests for tree parameters."""

    def test_zero_leaf_constant(self):
        assert ZERO_LEAF.hex() == "0d823319708ab99ec915efd4f7e03d11ca1790918e8f04cd14100aceca2aa9ff"

    def test_empty_hashes(self, proving_system):
        """Test emptyHash[i+1] = H2(emptyHash[i], emptyHash[i])."""
        config = TreeConfig.build(proving_system.hash_pair, depth=4)
        assert len(config.empty_hashes) == 5
        assert config.empty_hashes[0] == ZERO_LEAF
        for i in range(4):
            expected = proving_system.hash_pair(config.empty_hashes[i], config.empty_hashes[i])
            assert config.empty_hashes[i + 1] == expected

    def test_default_depth(self, proving_system):
        config = TreeConfig.build(proving_system.hash_pair)
        assert config.depth == TREE_DEPTH == 20
        assert config.capacity == 2**20

    def test_invalid_depth(self, proving_system):
        for depth in [0, -1, 33]:
            with pytest.raises(ValueError):
                TreeConfig.build(proving_system.hash_pair, depth=depth)


class TestInsertion:
    """Tests for leaf insertion."""

    def test_empty_root(self, merkle_tree, tree_config):
        assert merkle_tree.current_root() == tree_config.empty_hashes[tree_config.depth]
        assert len(merkle_tree) == 0

    def test_insert_returns_indices(self, merkle_tree, leaves):
        assert [merkle_tree.insert(leaf) for leaf in leaves] == list(range(len(leaves)))
        assert len(merkle_tree) == len(leaves)

    def test_root_changes_on_insert(self, merkle_tree, leaves):
        roots = {merkle_tree.root}
        for leaf in leaves:
            merkle_tree.insert(leaf)
            roots.add(merkle_tree.root)
        assert len(roots) == len(leaves) + 1

    def test_single_leaf_root(self, merkle_tree, tree_config, proving_system):
        """Test that one leaf folds with empty siblings at every level."""
        leaf = FieldCodec.from_int(7)
        merkle_tree.insert(leaf)
        expected = leaf
        for level in range(tree_config.depth):
            expected = proving_system.hash_pair(expected, tree_config.empty_hashes[level])
        assert merkle_tree.current_root() == expected

    def test_insert_rejects_non_canonical(self, merkle_tree):
        with pytest.raises(ValueError):
            merkle_tree.insert(BN254_MODULUS.to_bytes(32, "big"))
        with pytest.raises(ValueError):
            merkle_tree.insert(b"short")

    def test_capacity(self, proving_system):
        """Test that a full tree refuses further leaves."""
        tree = MerkleAccumulator(TreeConfig.build(proving_system.hash_pair, depth=2))
        for i in range(4):
            tree.insert(FieldCodec.from_int(i))
        assert tree.is_full
        with pytest.raises(CapacityExceededError):
            tree.insert(FieldCodec.from_int(9))

    def test_from_leaves(self, tree_config, merkle_tree, leaves):
        for leaf in leaves:
            merkle_tree.insert(leaf)
        rebuilt = MerkleAccumulator.from_leaves(tree_config, leaves)
        assert rebuilt.root == merkle_tree.root


class TestAuthPaths:
    """Tests for authentication paths."""

    def test_every_leaf_folds_to_root(self, merkle_tree, leaves):
        for leaf in leaves:
            merkle_tree.insert(leaf)
        for index, leaf in enumerate(leaves):
            path = merkle_tree.auth_path(index)
            assert path.compute_root(leaf, merkle_tree.config.hash_pair) == merkle_tree.current_root()
            assert merkle_tree.verify_path(leaf, path)

    def test_path_bits_are_index_bits(self, merkle_tree, leaves):
        for leaf in leaves:
            merkle_tree.insert(leaf)
        path = merkle_tree.auth_path(5 - 1)
        assert path.path_bits[:3] == (False, False, True)
        assert len(path.siblings) == merkle_tree.depth

    def test_first_leaf_siblings_are_empty_hashes(self, merkle_tree, tree_config):
        merkle_tree.insert(FieldCodec.from_int(3))
        path = merkle_tree.auth_path(0)
        assert path.siblings == tree_config.empty_hashes[: tree_config.depth]
        assert not any(path.path_bits)

    def test_old_path_fails_against_new_root(self, merkle_tree, leaves):
        """Test that a path is only valid for the root it was taken at."""
        merkle_tree.insert(leaves[0])
        old_path = merkle_tree.auth_path(0)
        old_root = merkle_tree.root
        merkle_tree.insert(leaves[1])
        assert not merkle_tree.verify_path(leaves[0], old_path)
        assert merkle_tree.verify_path(leaves[0], old_path, root=old_root)

    def test_wrong_leaf_fails(self, merkle_tree, leaves):
        merkle_tree.insert(leaves[0])
        assert not merkle_tree.verify_path(leaves[1], merkle_tree.auth_path(0))

    def test_invalid_index(self, merkle_tree, leaves):
        merkle_tree.insert(leaves[0])
        for index in [-1, 1, 100, True, "0"]:
            with pytest.raises(InvalidLeafIndexError):
                merkle_tree.auth_path(index)

    def test_fold_path_matches_auth_path(self, merkle_tree, leaves):
        for leaf in leaves:
            merkle_tree.insert(leaf)
        path = merkle_tree.auth_path(3)
        root = fold_path(leaves[3], path.siblings, path.path_bits, merkle_tree.config.hash_pair)
        assert root == merkle_tree.root

    def test_fold_path_length_mismatch(self, proving_system):
        with pytest.raises(ValueError):
            fold_path(bytes(32), [bytes(32)], [True, False], proving_system.hash_pair)

    def test_path_serialization(self, merkle_tree, leaves):
        merkle_tree.insert(leaves[0])
        data = merkle_tree.auth_path(0).to_dict()
        assert data["leaf_index"] == 0
        assert len(data["siblings"]) == merkle_tree.depth
        assert all(s.startswith("0x") for s in data["siblings"])


class TestState:
    """Tests for state summaries."""

    def test_get_state(self, merkle_tree, leaves):
        merkle_tree.insert(leaves[0])
        state = merkle_tree.get_state()
        assert state["num_leaves"] == 1
        assert state["root"] == FieldCodec.to_hex(merkle_tree.root)
        assert state["depth"] == merkle_tree.depth

    def test_repr(self, merkle_tree):
        assert "MerkleAccumulator" in repr(merkle_tree)
