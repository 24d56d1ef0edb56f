"""Rayleigh 減衰モデル.

減衰行列を質量行列と剛性行列の線形結合で与える。係数は要素ごとに保持し、
TET4 要素の calc_damping_matrix() が α·M + β·K(x) を組み立てる。
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RayleighDamping:
    """Rayleigh 減衰 D = α·M + β·K.

    Attributes:
        mass_coeff: 質量比例係数 α [1/s]
        stiffness_coeff: 剛性比例係数 β [s]
    """

    mass_coeff: float = 0.0
    stiffness_coeff: float = 0.0

    def __post_init__(self) -> None:
        if self.mass_coeff < 0:
            raise ValueError(f"mass_coeff は非負: {self.mass_coeff}")
        if self.stiffness_coeff < 0:
            raise ValueError(f"stiffness_coeff は非負: {self.stiffness_coeff}")
