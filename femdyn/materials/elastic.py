"""等方弾性構成則（HyperelasticProtocol 適合）.

  LinearElasticModel      微小ひずみ線形弾性。dP/dF は定数。
  StVenantKirchhoffModel  Green-Lagrange ひずみに線形な St.Venant-Kirchhoff 超弾性。

テンソル添字: P_ij, F_kl, dPdF[i, j, k, l] = ∂P_ij/∂F_kl
"""

from __future__ import annotations

import numpy as np

from femdyn.core.results import StressResult

_I3 = np.eye(3)


def lame_parameters(E: float, nu: float) -> tuple[float, float]:
    """ヤング率・ポアソン比から Lamé 定数 (λ, μ) を返す.

    Args:
        E: ヤング率
        nu: ポアソン比 (-1 < nu < 0.5)

    Returns:
        (lam, mu)
    """
    if E <= 0:
        raise ValueError(f"E は正値: {E}")
    if not (-1.0 < nu < 0.5):
        raise ValueError(f"nu は (-1, 0.5): {nu}")
    lam = E * nu / ((1.0 + nu) * (1.0 - 2.0 * nu))
    mu = E / (2.0 * (1.0 + nu))
    return lam, mu


def _linear_elasticity_tangent(lam: float, mu: float) -> np.ndarray:
    """dP/dF = μ(δik δjl + δil δjk) + λ δij δkl."""
    d = _I3
    return (
        mu * (np.einsum("ik,jl->ijkl", d, d) + np.einsum("il,jk->ijkl", d, d))
        + lam * np.einsum("ij,kl->ijkl", d, d)
    )


class LinearElasticModel:
    """微小ひずみ線形弾性構成則.

    ε = (F + Fᵀ)/2 - I,  P = 2μ ε + λ tr(ε) I

    Args:
        E: ヤング率
        nu: ポアソン比
    """

    is_linear = True

    def __init__(self, E: float, nu: float) -> None:
        self.E = E
        self.nu = nu
        self.lam, self.mu = lame_parameters(E, nu)
        self._dPdF = _linear_elasticity_tangent(self.lam, self.mu)
        self._dPdF.setflags(write=False)

    def calc_stress_and_tangent(self, F: np.ndarray) -> StressResult:
        """応力と接線テンソル（定数）を返す."""
        eps = 0.5 * (F + F.T) - _I3
        P = 2.0 * self.mu * eps + self.lam * np.trace(eps) * _I3
        return StressResult(P=P, dPdF=self._dPdF)


class StVenantKirchhoffModel:
    """St.Venant-Kirchhoff 超弾性構成則.

    E = (FᵀF - I)/2,  S = 2μ E + λ tr(E) I,  P = F S

    接線:
      dP_ij/dF_kl = δik S_jl + μ (F Fᵀ)_ik δjl + μ F_il F_kj + λ F_ij F_kl

    Args:
        E: ヤング率
        nu: ポアソン比
    """

    is_linear = False

    def __init__(self, E: float, nu: float) -> None:
        self.E = E
        self.nu = nu
        self.lam, self.mu = lame_parameters(E, nu)

    def calc_stress_and_tangent(self, F: np.ndarray) -> StressResult:
        lam, mu = self.lam, self.mu
        E_gl = 0.5 * (F.T @ F - _I3)
        S = 2.0 * mu * E_gl + lam * np.trace(E_gl) * _I3
        P = F @ S
        dPdF = (
            np.einsum("ik,jl->ijkl", _I3, S)
            + mu * np.einsum("ik,jl->ijkl", F @ F.T, _I3)
            + mu * np.einsum("il,kj->ijkl", F, F)
            + lam * np.einsum("ij,kl->ijkl", F, F)
        )
        return StressResult(P=P, dPdF=dPdF)
