"""TET4 要素 — 4 節点線形四面体（体積要素）.

== 定式化 ==

参照配置 X, 現配置 x（節点 0..3）:
  Dm = [X1-X0, X2-X0, X3-X0],  Ds = [x1-x0, x2-x0, x3-x0]
  F = Ds·Dm⁻¹（要素内で一定）
  ∇N_i (i=1..3) = Dm⁻¹ の第 i 行,  ∇N_0 = -Σ ∇N_i

残差:
  G_e = M·a + D·v + f_el(x) - M·g
  f_el,a = V₀ · P·∇N_a

剛性（∂f_el/∂x）:
  K[a i, b k] = V₀ · Σ_jl dP_ij/dF_kl · ∂N_a/∂X_j · ∂N_b/∂X_l

減衰（Rayleigh）:
  D = α·M + β·K(x)
  ∂G/∂v = D は厳密だが、∂(K(x)·v)/∂x の項は剛性行列に含めない（近似）。

質量:
  整合質量 M_ab = ρV₀/20·(1 + δ_ab)·I₃、集中質量 M = ρV₀/4·I₁₂

参考文献:
  - Sifakis & Barbič "FEM simulation of 3D deformable solids" (2015)
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np

from femdyn.core.constitutive import HyperelasticProtocol
from femdyn.core.element import node_dof_indices
from femdyn.core.results import ElementLocalState, PlantData
from femdyn.core.state import POSITIONS
from femdyn.materials.damping import RayleighDamping


class Tet4Data(NamedTuple):
    """TET4 の状態依存データ（位置のみに依存）.

    Attributes:
        F: (3, 3) 変形勾配
        P: (3, 3) 第一 Piola-Kirchhoff 応力
        stiffness: (12, 12) 剛性行列
    """

    F: np.ndarray
    P: np.ndarray
    stiffness: np.ndarray


def tet4_shape_gradients(node_xyz: np.ndarray) -> tuple[np.ndarray, float]:
    """参照配置での形状関数勾配と体積を返す.

    Args:
        node_xyz: (4, 3) 参照配置の節点座標

    Returns:
        grads: (4, 3) ∂N_a/∂X_j
        volume: 参照体積 V₀

    Raises:
        ValueError: 体積が非正（退化・反転要素）の場合
    """
    node_xyz = np.asarray(node_xyz, dtype=float)
    if node_xyz.shape != (4, 3):
        raise ValueError(f"node_xyz は (4,3) が必要。実際: {node_xyz.shape}")
    Dm = (node_xyz[1:] - node_xyz[0]).T
    volume = np.linalg.det(Dm) / 6.0
    scale = max(float(np.abs(Dm).max()), 1.0e-300) ** 3
    if volume <= 1.0e-14 * scale:
        raise ValueError(f"TET4 の参照体積が非正（退化または反転）: V0={volume:.3e}")
    grads = np.empty((4, 3), dtype=float)
    grads[1:] = np.linalg.inv(Dm)
    grads[0] = -grads[1:].sum(axis=0)
    return grads, volume


def tet4_mass_matrix(volume: float, density: float, *, lumped: bool = False) -> np.ndarray:
    """TET4 の質量行列 (12, 12).

    Args:
        volume: 参照体積
        density: 参照配置での密度 [kg/m³]
        lumped: True なら集中質量、False なら整合質量
    """
    if lumped:
        return density * volume / 4.0 * np.eye(12)
    nodal = density * volume / 20.0 * (np.ones((4, 4)) + np.eye(4))
    return np.kron(nodal, np.eye(3))


class LinearTetrahedron:
    """4 節点線形四面体要素（FemElementProtocol 適合）.

    参照配置量（形状関数勾配・体積・質量行列）は生成時に確定し、以後変更しない。

    Args:
        node_indices: (4,) グローバル節点インデックス
        node_xyz: (4, 3) 参照配置の節点座標
        material: 超弾性構成則
        density: 密度 [kg/m³]
        damping: Rayleigh 減衰
        lumped_mass: 集中質量を使う場合 True
    """

    nnodes: int = 4
    ndof: int = 12
    data_dependencies = frozenset({POSITIONS})

    def __init__(
        self,
        node_indices: np.ndarray,
        node_xyz: np.ndarray,
        material: HyperelasticProtocol,
        density: float,
        damping: RayleighDamping | None = None,
        *,
        lumped_mass: bool = False,
    ) -> None:
        node_indices = np.asarray(node_indices, dtype=np.int64)
        if node_indices.shape != (4,):
            raise ValueError(f"node_indices は (4,) が必要。実際: {node_indices.shape}")
        if np.unique(node_indices).size != 4:
            raise ValueError(f"node_indices に重複がある: {node_indices.tolist()}")
        if density <= 0:
            raise ValueError(f"density は正値: {density}")
        self.node_indices = node_indices
        self.node_indices.setflags(write=False)
        self.dof_indices = node_dof_indices(node_indices)
        self.dof_indices.setflags(write=False)
        self.material = material
        self.density = float(density)
        self.damping = damping if damping is not None else RayleighDamping()
        self.grads, self.volume = tet4_shape_gradients(node_xyz)
        self.grads.setflags(write=False)
        self._mass = tet4_mass_matrix(self.volume, self.density, lumped=lumped_mass)
        self._mass.setflags(write=False)

    def compute_data(self, local: ElementLocalState) -> Tet4Data:
        """変形勾配・応力・剛性行列を計算する."""
        x = local.x.reshape(4, 3)
        F = x.T @ self.grads
        P, dPdF = self.material.calc_stress_and_tangent(F)
        K = self.volume * np.einsum("ijkl,aj,bl->aibk", dPdF, self.grads, self.grads)
        K = K.reshape(12, 12)
        for arr in (F, K):
            arr.setflags(write=False)
        return Tet4Data(F=F, P=P, stiffness=K)

    def calc_residual(
        self,
        data: Tet4Data,
        local: ElementLocalState,
        plant_data: PlantData,
    ) -> np.ndarray:
        f_el = self.volume * (self.grads @ data.P.T).ravel()
        f_grav = self._mass @ np.tile(plant_data.gravity_vector, 4)
        return self._mass @ local.a + self.calc_damping_matrix(data) @ local.v + f_el - f_grav

    def calc_stiffness_matrix(self, data: Tet4Data) -> np.ndarray:
        return data.stiffness

    def calc_damping_matrix(self, data: Tet4Data) -> np.ndarray:
        return (
            self.damping.mass_coeff * self._mass
            + self.damping.stiffness_coeff * data.stiffness
        )

    def calc_mass_matrix(self, data: Tet4Data) -> np.ndarray:
        return self._mass
