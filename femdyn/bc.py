"""Dirichlet 境界条件.

節点単位で位置・速度・加速度を規定する。FemModel は
  - make_fem_state() / apply_boundary_condition() で状態に規定値を書き込み、
  - calc_residual() で拘束 DOF の残差成分をゼロにし、
  - calc_tangent_matrix() で拘束 DOF の行・列を単位行列に置き換える。
これにより拘束 DOF の未知数増分は常にゼロになる。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

import numpy as np

if TYPE_CHECKING:
    from femdyn.core.state import FemState
    from femdyn.sparse import SymmetricBlockSparseMatrix


class NodeState(NamedTuple):
    """1 節点の規定状態.

    Attributes:
        q: (3,) 位置
        v: (3,) 速度
        a: (3,) 加速度
    """

    q: np.ndarray
    v: np.ndarray
    a: np.ndarray


class DirichletBoundaryCondition:
    """節点ごとの Dirichlet 境界条件（節点の 3 自由度を全て拘束）."""

    def __init__(self) -> None:
        self._node_states: dict[int, NodeState] = {}

    def add_boundary_condition(self, node: int, node_state: NodeState) -> None:
        """節点 node を node_state に拘束する. 同じ節点への再指定は上書き.

        Args:
            node: グローバル節点インデックス
            node_state: 規定値（各成分 (3,)）
        """
        node = int(node)
        if node < 0:
            raise ValueError(f"節点インデックスは非負: {node}")
        fields = []
        for name, value in zip(NodeState._fields, node_state, strict=True):
            arr = np.asarray(value, dtype=float)
            if arr.shape != (3,):
                raise ValueError(f"NodeState.{name} は (3,) が必要。実際: {arr.shape}")
            fields.append(arr.copy())
        self._node_states[node] = NodeState(*fields)

    def fix_nodes_at(self, nodes: np.ndarray, positions: np.ndarray) -> None:
        """複数節点を位置 positions (n, 3) で静止拘束する（速度・加速度ゼロ）."""
        positions = np.asarray(positions, dtype=float).reshape(-1, 3)
        nodes = np.asarray(nodes, dtype=int).ravel()
        if positions.shape[0] != nodes.size:
            raise ValueError("nodes と positions の長さが一致していません。")
        zero = np.zeros(3)
        for node, q in zip(nodes, positions, strict=True):
            self.add_boundary_condition(int(node), NodeState(q, zero, zero))

    @property
    def nodes(self) -> np.ndarray:
        """拘束節点（昇順）."""
        return np.array(sorted(self._node_states), dtype=np.int64)

    @property
    def constrained_dofs(self) -> np.ndarray:
        """拘束 DOF インデックス（昇順）."""
        nodes = self.nodes
        return (nodes[:, None] * 3 + np.arange(3, dtype=np.int64)[None, :]).ravel()

    def throw_if_node_out_of_range(self, num_nodes: int) -> None:
        if self._node_states and max(self._node_states) >= num_nodes:
            raise ValueError(
                f"拘束節点 {max(self._node_states)} がモデルの節点数 {num_nodes} を超えている"
            )

    def apply_boundary_condition_to_state(self, fem_state: FemState) -> None:
        """規定値を状態に書き込む."""
        if not self._node_states:
            return
        self.throw_if_node_out_of_range(fem_state.num_nodes)
        q = fem_state.positions.copy()
        v = fem_state.velocities.copy()
        a = fem_state.accelerations.copy()
        for node, ns in self._node_states.items():
            sl = slice(3 * node, 3 * node + 3)
            q[sl] = ns.q
            v[sl] = ns.v
            a[sl] = ns.a
        fem_state.set_positions(q)
        fem_state.set_velocities(v)
        fem_state.set_accelerations(a)

    def apply_homogeneous_boundary_condition(self, vector: np.ndarray) -> None:
        """拘束 DOF 成分をゼロにする（残差・未知数増分用）."""
        if not self._node_states:
            return
        vector[self.constrained_dofs] = 0.0

    def apply_boundary_condition_to_tangent_matrix(
        self,
        tangent_matrix: SymmetricBlockSparseMatrix,
    ) -> None:
        """拘束 DOF の行・列をゼロにし、対角を 1 にする.

        行列のスパース構造は変えない（パターン内の値を書き換えるだけ）。
        """
        if not self._node_states:
            return
        tangent_matrix.zero_rows_and_columns(self.constrained_dofs, 1.0)
