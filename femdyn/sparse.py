"""対称ブロック疎行列（接線行列の格納先）.

BlockSparsityPattern:
  ブロック行ごとの非ゼロブロック列（ソート済み）を CSR 風に保持する不変オブジェクト。
  (row, col) を線形キー row * num_blocks + col に写すとキー配列は昇順に並ぶので、
  ブロック座標の検索は np.searchsorted で一括に行える。

SymmetricBlockSparseMatrix:
  パターンを固定した (nnzb, b, b) のデータ配列を持ち、要素の密ブロックを
  add-into で加算する。パターン外への加算は SparsityPatternError。
  対称行列だが上下両三角を保持するので、そのまま scipy.sparse.bsr_matrix に変換できる。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

import numpy as np
import scipy.sparse as sp

from femdyn.core.errors import SparsityPatternError

logger = logging.getLogger(__name__)


# ====================================================================
# 非ゼロパターン
# ====================================================================


class BlockSparsityPattern:
    """ブロック非ゼロパターン.

    Args:
        block_sizes: 各ブロック行/列のサイズ（全て同じ値であること）
        neighbors: neighbors[i] はブロック行 i と結合するブロック列の集合。
            対称化されるので (i, j) と (j, i) の片方だけ与えればよい。
            対角ブロック (i, i) は常に含まれる。
    """

    def __init__(self, block_sizes: Sequence[int], neighbors: Sequence[Iterable[int]]) -> None:
        block_sizes = [int(b) for b in block_sizes]
        if len(neighbors) != len(block_sizes):
            raise ValueError(
                f"neighbors の長さ {len(neighbors)} がブロック数 {len(block_sizes)} と不一致"
            )
        if block_sizes and len(set(block_sizes)) != 1:
            raise ValueError(f"ブロックサイズは一様である必要がある: {sorted(set(block_sizes))}")
        nb = len(block_sizes)
        self._num_blocks = nb
        self._block_size = block_sizes[0] if block_sizes else 3

        rows: list[int] = []
        cols: list[int] = []
        for i, nbrs in enumerate(neighbors):
            for j in nbrs:
                j = int(j)
                if not 0 <= j < nb:
                    raise ValueError(f"ブロック列インデックス {j} が範囲外 (num_blocks={nb})")
                rows += [i, j]
                cols += [j, i]
        diag = np.arange(nb, dtype=np.int64)
        keys = np.concatenate([np.asarray(rows, dtype=np.int64) * nb + cols, diag * nb + diag])
        self._set_keys(np.unique(keys))

    @classmethod
    def from_stencils(
        cls,
        num_blocks: int,
        stencils: Iterable[np.ndarray],
        block_size: int = 3,
    ) -> BlockSparsityPattern:
        """要素ステンシル（節点インデックス列）の和集合からパターンを構築する.

        各ステンシルは自身の全節点ペア（対角含む）を密に結合する。
        重複するブロックは 1 つにまとめられる。
        """
        pattern = cls.__new__(cls)
        pattern._num_blocks = int(num_blocks)
        pattern._block_size = int(block_size)
        nb = pattern._num_blocks
        chunks = [np.arange(nb, dtype=np.int64) * (nb + 1)]
        for stencil in stencils:
            s = np.asarray(stencil, dtype=np.int64)
            if s.size and (s.min() < 0 or s.max() >= nb):
                raise ValueError(f"ステンシル {s.tolist()} が範囲外 (num_blocks={nb})")
            chunks.append((s[:, None] * nb + s[None, :]).ravel())
        pattern._set_keys(np.unique(np.concatenate(chunks)))
        return pattern

    def _set_keys(self, keys: np.ndarray) -> None:
        nb = self._num_blocks
        self._keys = keys
        self._keys.setflags(write=False)
        if nb > 0:
            rows = keys // nb
            self._indices = keys % nb
        else:
            rows = np.zeros(0, dtype=np.int64)
            self._indices = np.zeros(0, dtype=np.int64)
        self._indptr = np.zeros(nb + 1, dtype=np.int64)
        np.cumsum(np.bincount(rows, minlength=nb), out=self._indptr[1:])

    # ------------------------------------------------------------------

    @property
    def num_blocks(self) -> int:
        return self._num_blocks

    @property
    def block_size(self) -> int:
        return self._block_size

    @property
    def num_nonzero_blocks(self) -> int:
        return int(self._keys.size)

    @property
    def indptr(self) -> np.ndarray:
        return self._indptr

    @property
    def indices(self) -> np.ndarray:
        return self._indices

    def neighbors(self, i: int) -> np.ndarray:
        """ブロック行 i の非ゼロブロック列（昇順）."""
        return self._indices[self._indptr[i] : self._indptr[i + 1]]

    def contains(self, i: int, j: int) -> bool:
        key = int(i) * self._num_blocks + int(j)
        pos = int(np.searchsorted(self._keys, key))
        return pos < self._keys.size and int(self._keys[pos]) == key

    def locate(self, block_indices: np.ndarray) -> np.ndarray:
        """ステンシルの全ブロックペアのデータ配列内位置を返す.

        Args:
            block_indices: (n,) ブロックインデックス

        Returns:
            locations: (n * n,) 位置。順序は (a, b) の行優先。

        Raises:
            SparsityPatternError: パターンに存在しないペアがある場合
        """
        b = np.asarray(block_indices, dtype=np.int64)
        nb = self._num_blocks
        if b.size and (b.min() < 0 or b.max() >= nb):
            raise SparsityPatternError(f"ブロックインデックス {b.tolist()} が範囲外 (num_blocks={nb})")
        query = (b[:, None] * nb + b[None, :]).ravel()
        pos = np.searchsorted(self._keys, query)
        found = pos < self._keys.size
        found[found] = self._keys[pos[found]] == query[found]
        if not np.all(found):
            missing = query[~found][0]
            raise SparsityPatternError(
                f"ブロック ({missing // nb}, {missing % nb}) は事前確保されたパターンに存在しない"
            )
        return pos

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BlockSparsityPattern):
            return NotImplemented
        if self is other:
            return True
        return (
            self._num_blocks == other._num_blocks
            and self._block_size == other._block_size
            and np.array_equal(self._keys, other._keys)
        )

    def __hash__(self) -> int:
        return hash((self._num_blocks, self._block_size, self._keys.size))


# ====================================================================
# 対称ブロック疎行列
# ====================================================================


class SymmetricBlockSparseMatrix:
    """パターン固定の対称ブロック疎行列.

    Args:
        pattern: 非ゼロブロックパターン。以後変更されない。
    """

    def __init__(self, pattern: BlockSparsityPattern) -> None:
        self._pattern = pattern
        b = pattern.block_size
        self._data = np.zeros((pattern.num_nonzero_blocks, b, b), dtype=float)

    @property
    def pattern(self) -> BlockSparsityPattern:
        return self._pattern

    @property
    def shape(self) -> tuple[int, int]:
        n = self._pattern.num_blocks * self._pattern.block_size
        return (n, n)

    @property
    def data(self) -> np.ndarray:
        """(nnzb, b, b) ブロックデータ（読み出し専用ビュー）."""
        view = self._data.view()
        view.setflags(write=False)
        return view

    def set_zero(self) -> None:
        """パターンを保ったまま全値をゼロにする."""
        self._data.fill(0.0)

    def add_to_block(
        self,
        block_indices: np.ndarray,
        block: np.ndarray,
        locations: np.ndarray | None = None,
    ) -> None:
        """密ブロックを加算する（上書きではなく加算）.

        Args:
            block_indices: (n,) ブロック（節点）インデックス
            block: (n*b, n*b) 密行列
            locations: pattern.locate(block_indices) の結果。事前計算済みなら渡す。

        Raises:
            SparsityPatternError: パターン外のブロックを含む場合
        """
        b = self._pattern.block_size
        block_indices = np.asarray(block_indices, dtype=np.int64)
        n = block_indices.size
        block = np.asarray(block, dtype=float)
        if block.shape != (n * b, n * b):
            raise ValueError(f"block は ({n * b}, {n * b}) が必要。実際: {block.shape}")
        if locations is None:
            locations = self._pattern.locate(block_indices)
        blocks = block.reshape(n, b, n, b).transpose(0, 2, 1, 3).reshape(n * n, b, b)
        np.add.at(self._data, locations, blocks)

    def get_block(self, i: int, j: int) -> np.ndarray:
        """ブロック (i, j) のコピーを返す. パターン外ならゼロブロック."""
        p = self._pattern
        if not p.contains(i, j):
            return np.zeros((p.block_size, p.block_size), dtype=float)
        pos = int(p.indptr[i] + np.searchsorted(p.neighbors(i), j))
        return self._data[pos].copy()

    def zero_rows_and_columns(self, dofs: Iterable[int], diagonal: float = 1.0) -> None:
        """指定 DOF の行・列をゼロにし、対角に diagonal を置く（Dirichlet 拘束用）."""
        p = self._pattern
        b = p.block_size
        dofs = np.asarray(list(dofs), dtype=np.int64)
        n = self.shape[0]
        if dofs.size and (dofs.min() < 0 or dofs.max() >= n):
            raise ValueError(f"DOF インデックスが範囲外 (num_dofs={n})")
        for dof in dofs:
            blk, k = divmod(int(dof), b)
            self._data[p.indptr[blk] : p.indptr[blk + 1], k, :] = 0.0
            self._data[p.indices == blk, :, k] = 0.0
        # 対角は行・列を全て消してから置く
        for dof in dofs:
            blk, k = divmod(int(dof), b)
            pos = p.locate(np.array([blk]))[0]
            self._data[pos, k, k] = diagonal

    def make_dense(self) -> np.ndarray:
        """密行列に展開する."""
        p = self._pattern
        nb, b = p.num_blocks, p.block_size
        dense = np.zeros((nb, b, nb, b), dtype=float)
        rows = np.repeat(np.arange(nb, dtype=np.int64), np.diff(p.indptr))
        dense[rows, :, p.indices, :] = self._data
        return dense.reshape(nb * b, nb * b)

    def to_scipy(self) -> sp.bsr_matrix:
        """scipy.sparse.bsr_matrix（データはコピー）に変換する."""
        p = self._pattern
        b = p.block_size
        return sp.bsr_matrix(
            (self._data.copy(), p.indices.copy(), p.indptr.copy()),
            shape=self.shape,
            blocksize=(b, b),
        )
