"""離散時間積分スキーム（Newmark-β 法）.

FemModel の残差・接線行列を時間積分に接続する。未知数 z は次ステップの加速度 a。

Newmark 近似:
    x_{n+1} = x_n + Δt·v_n + Δt²·[(0.5-β)·a_n + β·a_{n+1}]
    v_{n+1} = v_n + Δt·[(1-γ)·a_n + γ·a_{n+1}]

よって ∂x/∂a = β·Δt², ∂v/∂a = γ·Δt で、dG/da = β·Δt²·K + γ·Δt·D + M。
接線行列の重み (stiffness, damping, mass) = (β·Δt², γ·Δt, 1)。

非線形反復（Newton 等）の選択は呼び出し側の責務で、本モジュールは
重み・状態更新のみを提供する。
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from femdyn.core.results import TangentWeights
from femdyn.core.state import FemState

# ====================================================================
# コンフィグ
# ====================================================================


@dataclass
class NewmarkConfig:
    """Newmark-β 法の設定.

    Attributes:
        dt: 時間刻み [s]
        gamma: Newmark γ パラメータ (デフォルト 0.5)
        beta: Newmark β パラメータ (デフォルト 0.25 = 平均加速度法)
    """

    dt: float
    gamma: float = 0.5
    beta: float = 0.25

    def __post_init__(self) -> None:
        if self.dt <= 0:
            raise ValueError(f"dt は正値: {self.dt}")
        if self.beta <= 0 or self.beta > 0.5:
            raise ValueError(f"beta は (0, 0.5]: {self.beta}")
        if not (0.0 <= self.gamma <= 1.0):
            raise ValueError(f"gamma は [0, 1]: {self.gamma}")


# ====================================================================
# Newmark-β スキーム
# ====================================================================


class NewmarkScheme:
    """加速度を未知数とする Newmark-β スキーム.

    Args:
        config: NewmarkConfig
    """

    def __init__(self, config: NewmarkConfig) -> None:
        self.config = config

    @property
    def dt(self) -> float:
        return self.config.dt

    @property
    def weights(self) -> TangentWeights:
        """FemModel.calc_tangent_matrix() に渡す重み."""
        dt, beta, gamma = self.config.dt, self.config.beta, self.config.gamma
        return TangentWeights(stiffness=beta * dt * dt, damping=gamma * dt, mass=1.0)

    def unknowns(self, state: FemState) -> np.ndarray:
        """状態から未知数（加速度）を取り出す."""
        return state.accelerations.copy()

    def advance_one_time_step(
        self,
        prev_state: FemState,
        unknown: np.ndarray,
        state: FemState,
    ) -> None:
        """前ステップ状態と次ステップ加速度 unknown から state を更新する.

        Args:
            prev_state: 時刻 t_n の状態
            unknown: (num_dofs,) 時刻 t_{n+1} の加速度
            state: 出力先（時刻 t_{n+1} の状態）
        """
        dt, beta, gamma = self.config.dt, self.config.beta, self.config.gamma
        a_new = np.asarray(unknown, dtype=float)
        if a_new.shape != (prev_state.num_dofs,):
            raise ValueError(
                f"unknown のサイズは ({prev_state.num_dofs},) が必要。実際: {a_new.shape}"
            )
        x0 = prev_state.positions
        v0 = prev_state.velocities
        a0 = prev_state.accelerations
        state.set_positions(x0 + dt * v0 + dt * dt * ((0.5 - beta) * a0 + beta * a_new))
        state.set_velocities(v0 + dt * ((1.0 - gamma) * a0 + gamma * a_new))
        state.set_accelerations(a_new)

    def update_state_from_change_in_unknowns(self, dz: np.ndarray, state: FemState) -> None:
        """未知数の増分 dz（加速度増分）を state に反映する.

        a += dz,  v += γ·Δt·dz,  x += β·Δt²·dz
        """
        w = self.weights
        dz = np.asarray(dz, dtype=float)
        if dz.shape != (state.num_dofs,):
            raise ValueError(f"dz のサイズは ({state.num_dofs},) が必要。実際: {dz.shape}")
        state.set_positions(state.positions + w.stiffness * dz)
        state.set_velocities(state.velocities + w.damping * dz)
        state.set_accelerations(state.accelerations + dz)
