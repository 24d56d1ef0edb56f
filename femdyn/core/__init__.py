"""femdyn.core - 要素・構成則・状態の抽象インタフェース定義・戻り値型.

Protocol:
  FemElementProtocol     — アセンブリエンジンが要求する要素の能力
  HyperelasticProtocol   — 変形勾配ベースの構成則
状態:
  FemStateSystem / FemState — 節点状態と依存関係付きキャッシュ
"""

from femdyn.core.constitutive import HyperelasticProtocol
from femdyn.core.element import FemElementProtocol, node_dof_indices
from femdyn.core.errors import (
    BuilderConsumedError,
    ModelStateMismatchError,
    SparsityPatternError,
)
from femdyn.core.results import (
    CacheEntryDescriptor,
    ElementLocalState,
    PlantData,
    StressResult,
    TangentWeights,
)
from femdyn.core.state import (
    ACCELERATIONS,
    ALL_STATE_DEPENDENCIES,
    POSITIONS,
    VELOCITIES,
    FemState,
    FemStateSystem,
)

__all__ = [
    "FemElementProtocol",
    "HyperelasticProtocol",
    "node_dof_indices",
    "BuilderConsumedError",
    "ModelStateMismatchError",
    "SparsityPatternError",
    "CacheEntryDescriptor",
    "ElementLocalState",
    "PlantData",
    "StressResult",
    "TangentWeights",
    "POSITIONS",
    "VELOCITIES",
    "ACCELERATIONS",
    "ALL_STATE_DEPENDENCIES",
    "FemState",
    "FemStateSystem",
]
