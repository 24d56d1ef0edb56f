"""構成則（材料モデル）の抽象インタフェース定義.

Protocol 定義:
  HyperelasticProtocol — 変形勾配 F から第一 Piola-Kirchhoff 応力 P と
                         接線テンソル dP/dF を返す。体積要素はこれだけを使う。

将来の拡張:
  - 粘弾性: 内部変数を FemState のキャッシュ経由で管理
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import numpy as np

from femdyn.core.results import StressResult


@runtime_checkable
class HyperelasticProtocol(Protocol):
    """超弾性構成則の共通インタフェース.

    Attributes:
        is_linear: dP/dF が F に依存しない（線形弾性）場合 True

    適合クラス例:
      - LinearElasticModel        微小ひずみ線形弾性
      - StVenantKirchhoffModel    St.Venant-Kirchhoff 超弾性
    """

    is_linear: bool

    def calc_stress_and_tangent(self, F: np.ndarray) -> StressResult:
        """応力と接線テンソルを計算する.

        Args:
            F: (3, 3) 変形勾配

        Returns:
            StressResult: P (3, 3) と dPdF (3, 3, 3, 3)
        """
        ...
