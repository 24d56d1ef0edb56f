"""線形四面体メッシュの体積 FEM モデル.

VolumetricModel = FemModelImpl[LinearTetrahedron]。
要素は VolumetricModelBuilder.add_linear_tetrahedral_elements() で記述し、
build() でモデルに追加する。メッシュごとに節点を新規追加する
（既存節点とは共有しない。メッシュ内の節点インデックスはオフセットされる）。

使用例::

    model = VolumetricModel()
    builder = VolumetricModelBuilder(model)
    builder.add_linear_tetrahedral_elements(nodes, tets, LinearElasticModel(1e5, 0.3), 1e3)
    builder.build()
    state = model.make_fem_state()
    K = model.make_tangent_matrix()
    model.calc_tangent_matrix(state, [1.0, 0.0, 0.0], K)
"""

from __future__ import annotations

import logging
from typing import NamedTuple

import numpy as np

from femdyn.assembly import FemModelImpl
from femdyn.core.constitutive import HyperelasticProtocol
from femdyn.elements.tet4 import LinearTetrahedron
from femdyn.materials.damping import RayleighDamping
from femdyn.model import FemModelBuilder

logger = logging.getLogger(__name__)


class _TetMesh(NamedTuple):
    nodes: np.ndarray
    tets: np.ndarray
    material: HyperelasticProtocol
    density: float
    damping: RayleighDamping
    lumped_mass: bool


class VolumetricModel(FemModelImpl[LinearTetrahedron]):
    """線形四面体要素の FEM モデル.

    Args:
        n_jobs: 局所計算の並列ワーカー数。1=逐次、-1=全CPUコア使用
        parallel_min_elements: 並列化する最小要素数
    """

    element_type = LinearTetrahedron

    def __init__(self, **kwargs) -> None:
        self._reference_positions: list[np.ndarray] = []
        super().__init__(**kwargs)

    @property
    def is_linear(self) -> bool:
        return all(e.material.is_linear for e in self._elements)

    def _make_reference_positions(self) -> np.ndarray:
        if not self._reference_positions:
            return np.zeros(0, dtype=float)
        return np.concatenate(self._reference_positions)

    @property
    def _num_reference_nodes(self) -> int:
        """追加済み節点数（FemStateSystem 更新前の節点も含む）."""
        return sum(q.size for q in self._reference_positions) // 3

    def _add_nodes(self, node_xyz: np.ndarray) -> None:
        """節点を末尾に追加する（ビルダー専用）."""
        self._reference_positions.append(np.asarray(node_xyz, dtype=float).ravel().copy())


class VolumetricModelBuilder(FemModelBuilder):
    """VolumetricModel のビルダー.

    Args:
        model: 要素の追加先（ビルダーより長く生存させること）
    """

    def __init__(self, model: VolumetricModel) -> None:
        if not isinstance(model, VolumetricModel):
            raise TypeError(f"VolumetricModel が必要。実際: {type(model).__name__}")
        super().__init__(model)
        self._meshes: list[_TetMesh] = []

    def add_linear_tetrahedral_elements(
        self,
        nodes: np.ndarray,
        tets: np.ndarray,
        material: HyperelasticProtocol,
        density: float,
        damping: RayleighDamping | None = None,
        *,
        lumped_mass: bool = False,
    ) -> None:
        """四面体メッシュを記述する（build() で要素化）.

        Args:
            nodes: (N, 3) 参照配置の節点座標
            tets: (Ne, 4) メッシュ内の節点インデックス（正の向き）
            material: 超弾性構成則
            density: 密度 [kg/m³]
            damping: Rayleigh 減衰（None = 減衰なし）
            lumped_mass: 集中質量を使う場合 True

        Raises:
            BuilderConsumedError: build() 済みの場合
            ValueError: 配列形状・インデックスが不正な場合
        """
        self._throw_if_built()
        nodes = np.asarray(nodes, dtype=float)
        tets = np.asarray(tets, dtype=np.int64)
        if nodes.ndim != 2 or nodes.shape[1] != 3:
            raise ValueError(f"nodes は (N,3) が必要。実際: {nodes.shape}")
        if tets.size == 0:
            tets = tets.reshape(0, 4)
        if tets.ndim != 2 or tets.shape[1] != 4:
            raise ValueError(f"tets は (Ne,4) が必要。実際: {tets.shape}")
        if tets.size and (tets.min() < 0 or tets.max() >= nodes.shape[0]):
            raise ValueError(f"tets の節点インデックスが範囲外 (N={nodes.shape[0]})")
        if density <= 0:
            raise ValueError(f"density は正値: {density}")
        damping = damping if damping is not None else RayleighDamping()
        self._meshes.append(
            _TetMesh(nodes.copy(), tets.copy(), material, float(density), damping, lumped_mass)
        )

    def _do_build(self) -> None:
        model: VolumetricModel = self._model  # type: ignore[assignment]
        # 要素生成（退化要素の例外）を全メッシュ分済ませてからモデルを変更する
        offset = model._num_reference_nodes
        staged = []
        for mesh in self._meshes:
            elements = [
                LinearTetrahedron(
                    tet + offset,
                    mesh.nodes[tet],
                    mesh.material,
                    mesh.density,
                    mesh.damping,
                    lumped_mass=mesh.lumped_mass,
                )
                for tet in mesh.tets
            ]
            staged.append((mesh.nodes, elements))
            offset += len(mesh.nodes)

        for nodes, elements in staged:
            model._add_nodes(nodes)
            for element in elements:
                model._add_element(element)
            logger.debug("四面体メッシュ追加: nodes=%d, elements=%d", len(nodes), len(elements))
