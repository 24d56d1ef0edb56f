"""メソッド戻り値・軽量データの型定義.

各モジュールの公開メソッドが受け渡すデータ構造を NamedTuple で統一的に定義する。
NamedTuple を採用する理由:
  - 名前付きフィールドアクセス（weights.stiffness, result.P 等）
  - タプルアンパッキングとの互換性（P, dPdF = model.calc_stress_and_tangent(F)）
  - 不変（immutable）で、要素・キャッシュ間で共有しても安全
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, NamedTuple

import numpy as np

if TYPE_CHECKING:
    from femdyn.core.state import FemState


class TangentWeights(NamedTuple):
    """接線行列の重み係数.

    接線行列 = stiffness·∂G/∂x + damping·∂G/∂v + mass·∂G/∂a

    Attributes:
        stiffness: 剛性行列の重み
        damping: 減衰行列の重み
        mass: 質量行列の重み
    """

    stiffness: float
    damping: float
    mass: float


class StressResult(NamedTuple):
    """超弾性構成則の評価結果.

    Attributes:
        P: (3, 3) 第一 Piola-Kirchhoff 応力
        dPdF: (3, 3, 3, 3) 接線テンソル dP_ij/dF_kl
    """

    P: np.ndarray
    dPdF: np.ndarray


class ElementLocalState(NamedTuple):
    """要素ステンシル上に収集した局所状態.

    Attributes:
        x: (ndof,) 要素節点位置
        v: (ndof,) 要素節点速度
        a: (ndof,) 要素節点加速度
    """

    x: np.ndarray
    v: np.ndarray
    a: np.ndarray


class PlantData(NamedTuple):
    """要素の残差計算に渡す外部データ.

    Attributes:
        gravity_vector: (3,) 重力加速度ベクトル
    """

    gravity_vector: np.ndarray


class CacheEntryDescriptor(NamedTuple):
    """FemStateSystem に宣言されたキャッシュエントリ.

    Attributes:
        name: 計算の識別名
        calc: FemState を受け取り値を返す計算関数
        dependencies: 無効化の依存先（"positions", "velocities", "accelerations" の部分集合）
    """

    name: str
    calc: Callable[[FemState], Any]
    dependencies: frozenset[str]
