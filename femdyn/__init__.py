"""femdyn - 動弾性問題の FEM 残差・接線行列アセンブリエンジン.

主な公開オブジェクト:
  FemModel / FemModelBuilder       — 公開インタフェースとビルダー
  FemModelImpl                     — 要素型で特殊化したアセンブリエンジン
  VolumetricModel / VolumetricModelBuilder — 線形四面体モデル
  SymmetricBlockSparseMatrix       — 接線行列の格納先
  DirichletBoundaryCondition       — 節点拘束
  NewmarkScheme                    — 時間積分の重み・状態更新
"""

from femdyn.assembly import FemModelImpl
from femdyn.bc import DirichletBoundaryCondition, NodeState
from femdyn.core.errors import (
    BuilderConsumedError,
    ModelStateMismatchError,
    SparsityPatternError,
)
from femdyn.core.results import TangentWeights
from femdyn.core.state import FemState, FemStateSystem
from femdyn.dynamics import NewmarkConfig, NewmarkScheme
from femdyn.model import BuilderState, FemModel, FemModelBuilder
from femdyn.sparse import BlockSparsityPattern, SymmetricBlockSparseMatrix
from femdyn.volumetric import VolumetricModel, VolumetricModelBuilder

__version__ = "0.1.0"

__all__ = [
    "FemModel",
    "FemModelBuilder",
    "BuilderState",
    "FemModelImpl",
    "VolumetricModel",
    "VolumetricModelBuilder",
    "FemState",
    "FemStateSystem",
    "BlockSparsityPattern",
    "SymmetricBlockSparseMatrix",
    "DirichletBoundaryCondition",
    "NodeState",
    "NewmarkConfig",
    "NewmarkScheme",
    "TangentWeights",
    "BuilderConsumedError",
    "ModelStateMismatchError",
    "SparsityPatternError",
]
