"""FEM 要素の抽象インタフェース定義.

FemModelImpl が要求する要素の能力を Protocol で定義する。

要素は生成時にステンシル（節点インデックス・DOF インデックス）と参照配置量を
確定させ、以後は変更しない。呼び出し間で可変状態を持たず、状態依存の中間量は
compute_data() の戻り値として FemState のキャッシュに保存される。

Protocol を採用する理由:
  - 構造的部分型: 明示的な継承不要
  - ランタイムチェックは runtime_checkable で補完
"""

from __future__ import annotations

from collections.abc import Set
from typing import Any, Protocol, runtime_checkable

import numpy as np

from femdyn.core.results import ElementLocalState, PlantData


@runtime_checkable
class FemElementProtocol(Protocol):
    """FEM 要素の共通インタフェース.

    Attributes:
        nnodes: 要素の節点数（線形四面体 = 4）
        ndof: 要素あたりの総自由度数（= 3 * nnodes）
        node_indices: (nnodes,) グローバル節点インデックス
        dof_indices: (ndof,) グローバル DOF インデックス（局所 DOF 順）
        data_dependencies: compute_data() が読む状態ベクトル名の集合。
            これ以外の状態ベクトルの更新ではキャッシュは無効化されない。

    適合クラス例:
      - LinearTetrahedron
    """

    nnodes: int
    ndof: int
    node_indices: np.ndarray
    dof_indices: np.ndarray
    data_dependencies: Set[str]

    def compute_data(self, local: ElementLocalState) -> Any:
        """状態依存の中間量（変形勾配・応力等）を計算する.

        Args:
            local: 要素ステンシル上の局所状態

        Returns:
            data: 要素型ごとのデータ。他のメソッドにそのまま渡される。
        """
        ...

    def calc_residual(
        self,
        data: Any,
        local: ElementLocalState,
        plant_data: PlantData,
    ) -> np.ndarray:
        """局所残差 G_e(x, v, a) を計算する.

        Returns:
            G_e: (ndof,) 局所残差
        """
        ...

    def calc_stiffness_matrix(self, data: Any) -> np.ndarray:
        """局所剛性行列 ∂G_e/∂x (ndof, ndof)."""
        ...

    def calc_damping_matrix(self, data: Any) -> np.ndarray:
        """局所減衰行列 ∂G_e/∂v (ndof, ndof)."""
        ...

    def calc_mass_matrix(self, data: Any) -> np.ndarray:
        """局所質量行列 ∂G_e/∂a (ndof, ndof)."""
        ...


def node_dof_indices(node_indices: np.ndarray) -> np.ndarray:
    """グローバル節点インデックスから 3 自由度/節点の DOF インデックスを返す.

    Args:
        node_indices: (nnodes,) グローバル節点インデックス

    Returns:
        edofs: (3 * nnodes,) グローバル DOF インデックス
    """
    node_indices = np.asarray(node_indices, dtype=np.int64)
    return (node_indices[:, None] * 3 + np.arange(3, dtype=np.int64)[None, :]).ravel()
