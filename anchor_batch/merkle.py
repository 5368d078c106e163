"""Merkle commitment and proof generation for matched swap batches."""

import json
import logging
from dataclasses import dataclass

from web3 import Web3

from .types import MatchedSwap, MerkleProof

logger = logging.getLogger(__name__)


def _hash_pair(a: bytes, b: bytes) -> bytes:
    """Hash two nodes, sorting them first (OpenZeppelin standard)."""
    if a <= b:
        return Web3.keccak(a + b)
    else:
        return Web3.keccak(b + a)


def _to_bytes(value) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        node = bytes(value)
    else:
        node = bytes.fromhex(str(value).removeprefix("0x"))
    if len(node) != 32:
        raise ValueError(f"Expected a 32-byte node, got {len(node)} bytes")
    return node


def _hex(node: bytes) -> str:
    return "0x" + bytes(node).hex()


def canonical_leaf_data(swap: MatchedSwap) -> str:
    """Serialize a matched swap with sorted keys and no whitespace."""
    return json.dumps(swap.to_dict(), sort_keys=True, separators=(",", ":"))


def compute_leaf(swap: MatchedSwap) -> bytes:
    """Compute a Merkle leaf: keccak256 of the canonical JSON of the swap."""
    return Web3.keccak(text=canonical_leaf_data(swap))


class MerkleTree:
    """Binary Merkle tree with sorted-pair hashing; odd nodes are carried up."""

    def __init__(self, leaves: list[bytes]):
        if not leaves:
            raise ValueError("Cannot build tree with no leaves")
        self.leaves = list(leaves)
        self.layers: list[list[bytes]] = []
        self._build()

    def _build(self):
        """Build the tree bottom-up."""
        layer = list(self.leaves)
        self.layers.append(list(layer))

        while len(layer) > 1:
            next_layer = []
            n = len(layer)
            for i in range(0, n, 2):
                if i + 1 < n:
                    next_layer.append(_hash_pair(layer[i], layer[i + 1]))
                else:
                    next_layer.append(layer[i])
            layer = next_layer
            self.layers.append(list(layer))

    @property
    def root(self) -> bytes:
        return self.layers[-1][0]

    @property
    def depth(self) -> int:
        return len(self.layers) - 1

    def get_proof(self, index: int) -> list[bytes]:
        """Get the Merkle proof for the leaf at the given index."""
        return [sibling for sibling, _ in self._walk(index)]

    def get_proof_indices(self, index: int) -> list[int]:
        """Left/right position of the node at each proof level (0 = left)."""
        return [position for _, position in self._walk(index)]

    def _walk(self, index: int) -> list[tuple[bytes, int]]:
        if index < 0 or index >= len(self.leaves):
            raise IndexError(f"Leaf index {index} out of range")

        steps = []
        idx = index

        for layer in self.layers[:-1]:
            n = len(layer)
            if idx % 2 == 0:
                # sibling is to the right
                if idx + 1 < n:
                    steps.append((layer[idx + 1], 0))
            else:
                # sibling is to the left
                steps.append((layer[idx - 1], 1))
            idx //= 2

        return steps

    def verify(self, leaf: bytes, proof: list[bytes], root: bytes) -> bool:
        """Verify a Merkle proof."""
        return verify_proof(leaf, proof, root)


def verify_proof(leaf, proof, root) -> bool:
    """Check that `proof` links `leaf` to `root`.

    Nodes may be bytes or 0x-prefixed hex strings. `proof` may be a list of
    sibling nodes or a MerkleProof. Malformed input returns False.
    """
    if isinstance(proof, MerkleProof):
        proof = proof.path
    try:
        computed = _to_bytes(leaf)
        for sibling in proof:
            computed = _hash_pair(computed, _to_bytes(sibling))
        return computed == _to_bytes(root)
    except (ValueError, TypeError):
        return False


@dataclass(frozen=True)
class Commitment:
    """Root and per-intent proofs over one batch of matched swaps."""

    root: str
    proofs: dict[str, list[MerkleProof]]  # intent id -> one proof per row, in row order
    tree: MerkleTree


def commit(swaps: list[MatchedSwap]) -> Commitment:
    """Build the Merkle commitment over a batch of matched swaps.

    Leaves are sorted before the tree is built, so the root depends only on
    the set of rows and not on their order.
    """
    logger.info(f"Generating Merkle tree for {len(swaps)} swaps")
    leaves = [compute_leaf(swap) for swap in swaps]
    ordered = sorted(range(len(leaves)), key=lambda i: leaves[i])
    tree = MerkleTree([leaves[i] for i in ordered])

    position = {row: slot for slot, row in enumerate(ordered)}
    proofs: dict[str, list[MerkleProof]] = {}
    for row, swap in enumerate(swaps):
        slot = position[row]
        proofs.setdefault(swap.intent_id, []).append(
            MerkleProof(
                leaf=_hex(leaves[row]),
                path=[_hex(node) for node in tree.get_proof(slot)],
                indices=tree.get_proof_indices(slot),
            )
        )

    root = _hex(tree.root)
    logger.info(f"Merkle tree generated with root: {root}")
    return Commitment(root=root, proofs=proofs, tree=tree)
