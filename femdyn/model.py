"""FEM モデルの公開インタフェースとビルダー.

FemModel は空間離散化された動弾性問題の運動方程式

    G(x, v, a) = 0

について、残差 G と接線行列 w₀·∂G/∂x + w₁·∂G/∂v + w₂·∂G/∂a を計算する。
x, v, a は節点位置・速度・加速度（3 自由度/節点）を並べたベクトル。

構成:
  FemModel          — 公開 API。互換性・バッファ検査を一度だけ行い、
                      _do_* の実装メソッドへ委譲する（NVI パターン）。
  FemModelImpl      — 要素型ごとに特殊化した実装（assembly.py）。
                      要素ループ内では動的な型分岐を行わない。
  FemModelBuilder   — 要素を追加する 1 回限りのビルダー。build() 後は使用不可。

参考文献:
  Sifakis, E. and Barbič, J. "Finite element method simulation of 3d deformable
  solids." Synthesis Lectures on Visual Computing 1.1 (2015): 1-69.
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod

import numpy as np

from femdyn.bc import DirichletBoundaryCondition
from femdyn.core.errors import (
    BuilderConsumedError,
    ModelStateMismatchError,
    SparsityPatternError,
)
from femdyn.core.results import PlantData, TangentWeights
from femdyn.core.state import FemState, FemStateSystem
from femdyn.sparse import BlockSparsityPattern, SymmetricBlockSparseMatrix

logger = logging.getLogger(__name__)


# ====================================================================
# FemModel
# ====================================================================


class FemModel(ABC):
    """FEM モデルの抽象基底クラス.

    具象モデルは num_elements, _make_reference_positions, _do_calc_residual,
    _do_calc_tangent_matrix, _do_make_tangent_matrix, _declare_cache_entries を
    実装する。要素の追加は FemModelBuilder 経由でのみ行う。
    """

    def __init__(self) -> None:
        self._fem_state_system = FemStateSystem(np.zeros(0, dtype=float))
        self._dirichlet_bc = DirichletBoundaryCondition()
        self._gravity_vector = np.zeros(3, dtype=float)

    # ------------------------------------------------------------------
    # サイズ
    # ------------------------------------------------------------------

    @property
    def num_nodes(self) -> int:
        """節点数. num_dofs は FemStateSystem により常に 3 の倍数."""
        return self.num_dofs // 3

    @property
    def num_dofs(self) -> int:
        return self._fem_state_system.num_dofs

    @property
    @abstractmethod
    def num_elements(self) -> int:
        """要素数."""

    @property
    def is_linear(self) -> bool:
        """残差が (x, v, a) の線形関数なら True. 具象モデルが上書きする."""
        return False

    # ------------------------------------------------------------------
    # 外部データ・境界条件
    # ------------------------------------------------------------------

    @property
    def gravity_vector(self) -> np.ndarray:
        return self._gravity_vector.copy()

    def set_gravity_vector(self, gravity: np.ndarray) -> None:
        """残差に含める重力加速度ベクトル (3,) を設定する（デフォルトはゼロ）."""
        g = np.asarray(gravity, dtype=float)
        if g.shape != (3,):
            raise ValueError(f"gravity は (3,) が必要。実際: {g.shape}")
        self._gravity_vector = g.copy()

    @property
    def plant_data(self) -> PlantData:
        return PlantData(gravity_vector=self._gravity_vector.copy())

    @property
    def dirichlet_boundary_condition(self) -> DirichletBoundaryCondition:
        return self._dirichlet_bc

    def set_dirichlet_boundary_condition(self, bc: DirichletBoundaryCondition) -> None:
        """Dirichlet 境界条件を設定する.

        Raises:
            ValueError: モデルに存在しない節点を拘束している場合
        """
        bc.throw_if_node_out_of_range(self.num_nodes)
        self._dirichlet_bc = bc

    def apply_boundary_condition(self, fem_state: FemState) -> None:
        """Dirichlet 境界条件の規定値を fem_state に書き込む."""
        self._throw_if_model_state_incompatible("apply_boundary_condition", fem_state)
        self._dirichlet_bc.apply_boundary_condition_to_state(fem_state)

    # ------------------------------------------------------------------
    # 公開 API（NVI）
    # ------------------------------------------------------------------

    def make_fem_state(self) -> FemState:
        """このモデルと互換な FemState を生成する.

        位置は参照配置、速度・加速度はゼロ、キャッシュは全て未計算。
        Dirichlet 境界条件が設定されていれば規定値を適用する。
        """
        state = self._fem_state_system.make_state()
        self._dirichlet_bc.apply_boundary_condition_to_state(state)
        return state

    def calc_residual(
        self,
        fem_state: FemState,
        residual: np.ndarray | None = None,
    ) -> np.ndarray:
        """残差 G(x, v, a) を計算する.

        Args:
            fem_state: このモデルと互換な状態
            residual: 出力先 (num_dofs,)。None なら新規確保。上書きされる。

        Returns:
            residual: (num_dofs,) 残差ベクトル（拘束 DOF 成分はゼロ）

        Raises:
            ModelStateMismatchError: fem_state がこのモデルと不整合
            ValueError: residual のサイズ・型が不正
        """
        self._throw_if_model_state_incompatible("calc_residual", fem_state)
        n = self.num_dofs
        if residual is None:
            residual = np.zeros(n, dtype=float)
        else:
            _check_output_vector("calc_residual", residual, n)
        self._do_calc_residual(fem_state, residual)
        self._dirichlet_bc.apply_homogeneous_boundary_condition(residual)
        return residual

    def calc_tangent_matrix(
        self,
        fem_state: FemState,
        weights: np.ndarray | TangentWeights,
        tangent_matrix: SymmetricBlockSparseMatrix,
    ) -> None:
        """接線行列（剛性・減衰・質量の重み付き和）を tangent_matrix に加算する.

        tangent_matrix は make_tangent_matrix() と同じ非ゼロパターンを持つこと。
        既存の値は消去せず加算する（必要なら事前に set_zero()）。
        Dirichlet 境界条件がある場合、拘束 DOF の行・列は単位行列に置き換える。

        Warning:
            微分が複雑になる項は要素側で近似することがあり、結果は一般に
            厳密なヤコビアンではない。反復解法の収束に十分な一貫した線形化である
            ことだけを仮定すること。

        Args:
            fem_state: このモデルと互換な状態
            weights: (3,) 剛性・減衰・質量の重み（この順）
            tangent_matrix: 出力先

        Raises:
            ModelStateMismatchError: fem_state がこのモデルと不整合
            SparsityPatternError: 行列の形状・パターンがモデルと不一致
            ValueError: weights が 3 成分でない
        """
        self._throw_if_model_state_incompatible("calc_tangent_matrix", fem_state)
        w = np.asarray(weights, dtype=float)
        if w.shape != (3,):
            raise ValueError(f"calc_tangent_matrix: weights は (3,) が必要。実際: {w.shape}")
        if not isinstance(tangent_matrix, SymmetricBlockSparseMatrix):
            raise SparsityPatternError(
                "calc_tangent_matrix: tangent_matrix は SymmetricBlockSparseMatrix が必要。"
                f"実際: {type(tangent_matrix).__name__}"
            )
        n = self.num_dofs
        if tangent_matrix.shape != (n, n):
            raise SparsityPatternError(
                f"calc_tangent_matrix: tangent_matrix の形状は ({n}, {n}) が必要。"
                f"実際: {tangent_matrix.shape}"
            )
        if tangent_matrix.pattern != self._tangent_matrix_pattern():
            raise SparsityPatternError(
                "calc_tangent_matrix: tangent_matrix の非ゼロパターンがモデルと一致しない。"
                "make_tangent_matrix() で生成した行列を使うこと"
            )
        self._do_calc_tangent_matrix(fem_state, TangentWeights(*w), tangent_matrix)
        self._dirichlet_bc.apply_boundary_condition_to_tangent_matrix(tangent_matrix)

    def make_tangent_matrix(self) -> SymmetricBlockSparseMatrix:
        """接線行列の非ゼロパターンを持つゼロ行列 (num_dofs, num_dofs) を生成する."""
        return self._do_make_tangent_matrix()

    # ------------------------------------------------------------------
    # 保護メソッド
    # ------------------------------------------------------------------

    @property
    def fem_state_system(self) -> FemStateSystem:
        return self._fem_state_system

    def _throw_if_model_state_incompatible(self, func: str, fem_state: FemState) -> None:
        """fem_state がこのモデル由来でなければ ModelStateMismatchError を送出する.

        同一システム由来、または DOF 数とキャッシュ構成が一致すれば互換とみなす。
        """
        system = self._fem_state_system
        if not isinstance(fem_state, FemState):
            raise ModelStateMismatchError(
                f"{func}: FemState が必要。実際: {type(fem_state).__name__}"
            )
        if fem_state.is_created_from_system(system):
            return
        if fem_state.num_dofs != system.num_dofs:
            raise ModelStateMismatchError(
                f"{func}: モデルと状態の DOF 数が不一致 "
                f"(model={system.num_dofs}, state={fem_state.num_dofs})"
            )
        if fem_state.cache_schema != system.cache_schema:
            raise ModelStateMismatchError(
                f"{func}: モデルと状態のキャッシュ構成が不一致。"
                "このモデルの make_fem_state() で生成した状態を使うこと"
            )

    def _update_fem_state_system(self) -> None:
        """FemStateSystem を作り直す.

        要素追加後、make_fem_state() より前に必ず呼ぶこと。
        キャッシュ宣言が最終的な要素集合を反映するようになる。
        """
        system = FemStateSystem(self._make_reference_positions())
        self._declare_cache_entries(system)
        self._fem_state_system = system
        self._dirichlet_bc.throw_if_node_out_of_range(self.num_nodes)
        logger.debug(
            "FemStateSystem 更新: num_dofs=%d, cache=%s",
            system.num_dofs,
            [e.name for e in system.cache_entries],
        )

    def _tangent_matrix_pattern(self) -> BlockSparsityPattern:
        """接線行列のパターン. 具象モデルはキャッシュした値を返すこと."""
        return self._do_make_tangent_matrix().pattern

    @abstractmethod
    def _make_reference_positions(self) -> np.ndarray:
        """参照配置の節点位置 (num_dofs,) を返す."""

    @abstractmethod
    def _do_calc_residual(self, fem_state: FemState, residual: np.ndarray) -> None:
        """calc_residual() の実装. 入力は検査済み."""

    @abstractmethod
    def _do_calc_tangent_matrix(
        self,
        fem_state: FemState,
        weights: TangentWeights,
        tangent_matrix: SymmetricBlockSparseMatrix,
    ) -> None:
        """calc_tangent_matrix() の実装. 入力は検査済み."""

    @abstractmethod
    def _do_make_tangent_matrix(self) -> SymmetricBlockSparseMatrix:
        """make_tangent_matrix() の実装."""

    @abstractmethod
    def _declare_cache_entries(self, fem_state_system: FemStateSystem) -> None:
        """要素型が必要とするキャッシュエントリを fem_state_system に宣言する."""


def _check_output_vector(func: str, out: np.ndarray, n: int) -> None:
    if not isinstance(out, np.ndarray):
        raise ValueError(f"{func}: 出力先は np.ndarray が必要。実際: {type(out).__name__}")
    if out.shape != (n,):
        raise ValueError(f"{func}: 出力先のサイズは ({n},) が必要。実際: {out.shape}")
    if not np.issubdtype(out.dtype, np.floating):
        raise ValueError(f"{func}: 出力先は浮動小数点配列が必要。実際: {out.dtype}")
    if not out.flags.writeable:
        raise ValueError(f"{func}: 出力先が書き込み不可")


# ====================================================================
# ビルダー
# ====================================================================


class BuilderState(enum.Enum):
    """ビルダーの状態."""

    UNBUILT = "unbuilt"
    BUILT = "built"


class FemModelBuilder(ABC):
    """FemModel に要素を追加するビルダーの基底クラス.

    具象モデルはこのクラスを継承した専用ビルダーを定義し、要素を記述する
    メソッドと _do_build() を実装する。

    build() 後のビルダーは消費済みで、再利用すると BuilderConsumedError。
    model は参照を保持するだけで所有しない。呼び出し側が model を
    ビルダーより長く生存させること。

    Args:
        model: 要素の追加先
    """

    def __init__(self, model: FemModel) -> None:
        if model is None:
            raise ValueError("model が None")
        self._model = model
        self._state = BuilderState.UNBUILT

    @property
    def state(self) -> BuilderState:
        return self._state

    @property
    def is_built(self) -> bool:
        return self._state is BuilderState.BUILT

    def build(self) -> None:
        """記述済みの要素をモデルに追加し、FemStateSystem を更新する."""
        self._throw_if_built()
        self._do_build()
        self._model._update_fem_state_system()
        self._state = BuilderState.BUILT
        logger.debug(
            "%s.build(): num_elements=%d, num_nodes=%d",
            type(self).__name__,
            self._model.num_elements,
            self._model.num_nodes,
        )

    def _throw_if_built(self) -> None:
        """build() 済みなら BuilderConsumedError を送出する."""
        if self._state is BuilderState.BUILT:
            raise BuilderConsumedError(
                f"{type(self).__name__} は build() 済み。新しいビルダーを作成すること"
            )

    @abstractmethod
    def _do_build(self) -> None:
        """記述済みの要素を self._model に追加する."""
