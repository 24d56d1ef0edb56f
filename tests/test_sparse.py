"""BlockSparsityPattern / SymmetricBlockSparseMatrix のテスト."""

from __future__ import annotations

import numpy as np
import pytest

from femdyn.core.errors import SparsityPatternError
from femdyn.sparse import BlockSparsityPattern, SymmetricBlockSparseMatrix

# ====================================================================
# パターン
# ====================================================================


class TestBlockSparsityPattern:
    def test_neighbors_are_symmetrized(self):
        pattern = BlockSparsityPattern([3, 3, 3], [[1], [], [0]])
        assert pattern.num_blocks == 3
        # 対角 3 + (0,1),(1,0),(0,2),(2,0)
        assert pattern.num_nonzero_blocks == 7
        np.testing.assert_array_equal(pattern.neighbors(0), [0, 1, 2])
        np.testing.assert_array_equal(pattern.neighbors(1), [0, 1])
        np.testing.assert_array_equal(pattern.neighbors(2), [0, 2])
        assert not pattern.contains(1, 2)

    def test_non_uniform_block_size_rejected(self):
        with pytest.raises(ValueError, match="一様"):
            BlockSparsityPattern([3, 2], [[], []])

    def test_neighbor_out_of_range(self):
        with pytest.raises(ValueError, match="範囲外"):
            BlockSparsityPattern([3, 3], [[2], []])

    def test_from_stencils_union(self):
        """重なるステンシルの和集合になること."""
        pattern = BlockSparsityPattern.from_stencils(5, [np.array([0, 1, 2]), np.array([2, 3])])
        # 3x3 + 2x2 - 共有 (2,2) + 孤立節点 4 の対角
        assert pattern.num_nonzero_blocks == 9 + 4 - 1 + 1
        assert pattern.contains(0, 2)
        assert pattern.contains(3, 2)
        assert not pattern.contains(0, 3)
        assert pattern.contains(4, 4)

    def test_equality(self):
        p1 = BlockSparsityPattern.from_stencils(3, [np.array([0, 1])])
        p2 = BlockSparsityPattern([3, 3, 3], [[1], [], []])
        p3 = BlockSparsityPattern.from_stencils(3, [np.array([1, 2])])
        assert p1 == p2
        assert p1 != p3

    def test_locate_missing_block(self):
        pattern = BlockSparsityPattern.from_stencils(3, [np.array([0, 1])])
        with pytest.raises(SparsityPatternError, match=r"\(0, 2\)"):
            pattern.locate(np.array([0, 2]))

    def test_empty_pattern(self):
        pattern = BlockSparsityPattern.from_stencils(0, [])
        assert pattern.num_nonzero_blocks == 0
        matrix = SymmetricBlockSparseMatrix(pattern)
        assert matrix.shape == (0, 0)
        assert matrix.make_dense().shape == (0, 0)


# ====================================================================
# 行列
# ====================================================================


class TestSymmetricBlockSparseMatrix:
    def _matrix(self) -> SymmetricBlockSparseMatrix:
        pattern = BlockSparsityPattern.from_stencils(3, [np.array([0, 1]), np.array([1, 2])])
        return SymmetricBlockSparseMatrix(pattern)

    def test_zero_initialized(self):
        m = self._matrix()
        assert m.shape == (9, 9)
        np.testing.assert_array_equal(m.make_dense(), np.zeros((9, 9)))

    def test_add_to_block_accumulates(self):
        """共有ブロックは上書きではなく加算されること."""
        rng = np.random.default_rng(0)
        A = rng.standard_normal((6, 6))
        A = A + A.T
        B = rng.standard_normal((6, 6))
        B = B + B.T
        m = self._matrix()
        m.add_to_block(np.array([0, 1]), A)
        m.add_to_block(np.array([1, 2]), B)

        expected = np.zeros((9, 9))
        expected[0:6, 0:6] += A
        expected[3:9, 3:9] += B
        np.testing.assert_allclose(m.make_dense(), expected)
        np.testing.assert_allclose(m.get_block(1, 1), A[3:6, 3:6] + B[0:3, 0:3])
        np.testing.assert_array_equal(m.get_block(0, 2), np.zeros((3, 3)))

    def test_add_outside_pattern_rejected(self):
        m = self._matrix()
        before = m.make_dense()
        with pytest.raises(SparsityPatternError):
            m.add_to_block(np.array([0, 2]), np.ones((6, 6)))
        np.testing.assert_array_equal(m.make_dense(), before)

    def test_add_wrong_block_shape(self):
        m = self._matrix()
        with pytest.raises(ValueError, match=r"\(6, 6\)"):
            m.add_to_block(np.array([0, 1]), np.ones((3, 3)))

    def test_precomputed_locations(self):
        m1 = self._matrix()
        m2 = self._matrix()
        block = np.arange(36, dtype=float).reshape(6, 6)
        loc = m2.pattern.locate(np.array([1, 2]))
        m1.add_to_block(np.array([1, 2]), block)
        m2.add_to_block(np.array([1, 2]), block, loc)
        np.testing.assert_array_equal(m1.make_dense(), m2.make_dense())

    def test_set_zero_keeps_pattern(self):
        m = self._matrix()
        m.add_to_block(np.array([0, 1]), np.ones((6, 6)))
        m.set_zero()
        assert m.pattern.num_nonzero_blocks == 7
        np.testing.assert_array_equal(m.make_dense(), np.zeros((9, 9)))

    def test_to_scipy(self):
        m = self._matrix()
        m.add_to_block(np.array([0, 1]), np.eye(6) * 2.0)
        m.add_to_block(np.array([1, 2]), np.ones((6, 6)))
        S = m.to_scipy()
        assert S.shape == (9, 9)
        assert S.blocksize == (3, 3)
        np.testing.assert_allclose(S.toarray(), m.make_dense())

    def test_zero_rows_and_columns(self):
        m = self._matrix()
        m.add_to_block(np.array([0, 1]), np.ones((6, 6)))
        m.add_to_block(np.array([1, 2]), np.ones((6, 6)))
        m.zero_rows_and_columns([4], diagonal=1.0)
        dense = m.make_dense()
        expected_row = np.zeros(9)
        expected_row[4] = 1.0
        np.testing.assert_array_equal(dense[4], expected_row)
        np.testing.assert_array_equal(dense[:, 4], expected_row)
        assert dense[3, 3] == 2.0

    def test_zero_rows_and_columns_out_of_range(self):
        m = self._matrix()
        with pytest.raises(ValueError, match="範囲外"):
            m.zero_rows_and_columns([9])
