import hashlib
import unittest

from vdraw.integrity import (
    EMPTY_MERKLE_ROOT,
    build_merkle_levels,
    build_merkle_root,
    generate_merkle_proof,
    verify_merkle_proof,
)


def _h(text: str) -> str:
    return hashlib.sha256(text.encode("ascii")).hexdigest()


def _leaves(count: int) -> list[str]:
    return [_h(f"ticket-{i}") for i in range(count)]


def _flip(value: str, position: int) -> str:
    replacement = "0" if value[position] != "0" else "1"
    return value[:position] + replacement + value[position + 1:]


class MerkleRootTests(unittest.TestCase):
    def test_empty_and_single(self) -> None:
        self.assertEqual(build_merkle_root([]), EMPTY_MERKLE_ROOT)
        leaf = _h("only")
        self.assertEqual(build_merkle_root([leaf]), leaf)

    def test_pairs_hash_concatenated_hex(self) -> None:
        a, b, c = _leaves(3)
        self.assertEqual(build_merkle_root([a, b]), _h(a + b))
        # odd tail is paired with itself
        self.assertEqual(build_merkle_root([a, b, c]), _h(_h(a + b) + _h(c + c)))

    def test_order_matters(self) -> None:
        a, b = _leaves(2)
        self.assertNotEqual(build_merkle_root([a, b]), build_merkle_root([b, a]))

    def test_tamper_detection(self) -> None:
        leaves = _leaves(7)
        root = build_merkle_root(leaves)
        for index in range(len(leaves)):
            for position in (0, 31, 63):
                with self.subTest(index=index, position=position):
                    tampered = list(leaves)
                    tampered[index] = _flip(tampered[index], position)
                    self.assertNotEqual(build_merkle_root(tampered), root)


class MerkleProofTests(unittest.TestCase):
    def test_round_trip_for_every_index(self) -> None:
        for size in range(1, 12):
            leaves = _leaves(size)
            root = build_merkle_root(leaves)
            for index in range(size):
                with self.subTest(size=size, index=index):
                    proof = generate_merkle_proof(leaves, index)
                    self.assertTrue(verify_merkle_proof(leaves[index], root, proof, index))

    def test_self_paired_tail_contributes_itself(self) -> None:
        leaves = _leaves(3)
        proof = generate_merkle_proof(leaves, 2)
        self.assertEqual(proof[0], leaves[2])
        self.assertEqual(proof[1], _h(leaves[0] + leaves[1]))

    def test_single_leaf_proof_is_empty(self) -> None:
        leaf = _h("solo")
        self.assertEqual(generate_merkle_proof([leaf], 0), [])
        self.assertTrue(verify_merkle_proof(leaf, leaf, [], 0))

    def test_wrong_leaf_index_or_root_fails(self) -> None:
        leaves = _leaves(5)
        root = build_merkle_root(leaves)
        proof = generate_merkle_proof(leaves, 1)
        self.assertFalse(verify_merkle_proof(leaves[2], root, proof, 1))
        self.assertFalse(verify_merkle_proof(leaves[1], root, proof, 0))
        self.assertFalse(verify_merkle_proof(leaves[1], _h("other"), proof, 1))
        self.assertFalse(verify_merkle_proof(leaves[1], root, proof, -1))

    def test_out_of_bounds_index(self) -> None:
        with self.assertRaises(ValueError):
            generate_merkle_proof(_leaves(2), 2)
        with self.assertRaises(ValueError):
            generate_merkle_proof(_leaves(2), -1)
        with self.assertRaises(ValueError):
            generate_merkle_proof([], 0)


class MerkleLevelsTests(unittest.TestCase):
    def test_levels_end_at_root(self) -> None:
        leaves = _leaves(5)
        levels = build_merkle_levels(leaves)
        self.assertEqual([len(level.hashes) for level in levels], [5, 3, 2, 1])
        self.assertEqual(levels[-1].hashes[0], build_merkle_root(leaves))
        self.assertIn("5 tickets", levels[0].description)

    def test_empty_levels(self) -> None:
        levels = build_merkle_levels([])
        self.assertEqual(len(levels), 1)
        self.assertEqual(levels[0].hashes, ())


if __name__ == "__main__":
    unittest.main()
