"""要素型で特殊化した FEM アセンブリエンジン.

FemModelImpl[E] は 1 種類の要素クラス E だけを保持し、残差・接線行列の
要素ループを実装する。

要素ループの方針:
  - 要素メソッドはループの前に要素クラスから 1 回だけ取り出し、
    ループ内では属性探索・型分岐を行わない（全要素が厳密に E 型であることを
    追加時に検査している）。
  - 局所計算（要素データ・局所残差・局所行列）を先に全要素分行い、
    その後に挿入順で散布加算する。散布は常に逐次なので、並列時も
    浮動小数点の加算順序は逐次実行と同一（ビット一致）。
  - 局所計算が途中で例外を送出した場合、出力先には何も書き込まれない。

並列化:
  n_jobs >= 2 かつ要素数が _PARALLEL_MIN_ELEMENTS 以上のとき、
  局所計算をスレッドプールで並列に行う。要素は互いの出力を読まないので独立。
  FemState のキャッシュ初回計算は FemState 側のロックで直列化される。
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, ClassVar, Generic, TypeVar

import numpy as np

from femdyn.core.element import FemElementProtocol
from femdyn.core.results import ElementLocalState, TangentWeights
from femdyn.core.state import FemState, FemStateSystem
from femdyn.model import FemModel
from femdyn.sparse import BlockSparsityPattern, SymmetricBlockSparseMatrix

logger = logging.getLogger(__name__)

# 並列化の最小要素数閾値（これ未満は逐次実行）
_PARALLEL_MIN_ELEMENTS = 256

ElementT = TypeVar("ElementT", bound=FemElementProtocol)


def resolve_n_jobs(n_jobs: int) -> int:
    """n_jobs を実ワーカー数に解決する. -1 = 全 CPU コア, 1 未満は 1."""
    if n_jobs == -1:
        n_jobs = os.cpu_count() or 1
    if n_jobs < 1:
        n_jobs = 1
    return n_jobs


class FemModelImpl(FemModel, Generic[ElementT]):
    """要素型 ElementT に特殊化した FemModel 実装.

    サブクラスはクラス属性 element_type に要素クラスを設定し、
    _make_reference_positions() を実装する。_make_reference_positions() が読む属性は
    super().__init__() より前に初期化すること（構築時に FemStateSystem を作るため）。
    要素はビルダーから _add_element() で追加する。

    Args:
        n_jobs: 局所計算の並列ワーカー数。1=逐次、-1=全CPUコア使用
        parallel_min_elements: 並列化する最小要素数
    """

    element_type: ClassVar[type]
    ELEMENT_DATA_CACHE_NAME: ClassVar[str] = "element_data"

    def __init__(
        self,
        *,
        n_jobs: int = 1,
        parallel_min_elements: int = _PARALLEL_MIN_ELEMENTS,
    ) -> None:
        if getattr(type(self), "element_type", None) is None:
            raise TypeError(f"{type(self).__name__} は element_type を定義していない")
        self._elements: list[ElementT] = []
        self._n_jobs = resolve_n_jobs(n_jobs)
        self._parallel_min_elements = max(1, int(parallel_min_elements))
        self._element_data_index: int | None = None
        self._pattern: BlockSparsityPattern | None = None
        self._block_locations: list[np.ndarray] = []
        super().__init__()
        # 空モデルでもキャッシュ宣言とパターンを持たせる
        self._update_fem_state_system()

    # ------------------------------------------------------------------
    # 要素管理
    # ------------------------------------------------------------------

    @property
    def num_elements(self) -> int:
        return len(self._elements)

    @property
    def elements(self) -> tuple[ElementT, ...]:
        return tuple(self._elements)

    @property
    def n_jobs(self) -> int:
        return self._n_jobs

    def _add_element(self, element: ElementT) -> None:
        """要素を末尾に追加する（ビルダー専用）."""
        if type(element) is not self.element_type:
            raise TypeError(
                f"{type(self).__name__} は {self.element_type.__name__} 専用。"
                f"実際: {type(element).__name__}"
            )
        self._elements.append(element)

    # ------------------------------------------------------------------
    # FemStateSystem / スパースパターン
    # ------------------------------------------------------------------

    def _update_fem_state_system(self) -> None:
        super()._update_fem_state_system()
        self._build_sparsity_pattern()

    def _declare_cache_entries(self, fem_state_system: FemStateSystem) -> None:
        self._element_data_index = fem_state_system.declare_cache_entry(
            self.ELEMENT_DATA_CACHE_NAME,
            self._calc_element_data,
            self.element_type.data_dependencies,
        )

    def _build_sparsity_pattern(self) -> None:
        """要素ステンシルの和集合から非ゼロパターンと各要素のブロック位置を構築する.

        要素が節点範囲外を参照している場合はここで例外になる
        （アセンブリ時ではなくパターン構築時に検出する）。
        """
        pattern = BlockSparsityPattern.from_stencils(
            self.num_nodes, (e.node_indices for e in self._elements)
        )
        self._block_locations = [pattern.locate(e.node_indices) for e in self._elements]
        self._pattern = pattern
        logger.debug(
            "スパースパターン構築: num_blocks=%d, nonzero_blocks=%d",
            pattern.num_blocks,
            pattern.num_nonzero_blocks,
        )

    def _tangent_matrix_pattern(self) -> BlockSparsityPattern:
        assert self._pattern is not None
        return self._pattern

    def _do_make_tangent_matrix(self) -> SymmetricBlockSparseMatrix:
        return SymmetricBlockSparseMatrix(self._tangent_matrix_pattern())

    # ------------------------------------------------------------------
    # 要素ループ
    # ------------------------------------------------------------------

    def _map_elements(self, func: Callable[..., Any], *iterables: Iterable[Any]) -> list[Any]:
        """func を要素ごとに適用し、挿入順の結果リストを返す."""
        if self._n_jobs >= 2 and len(self._elements) >= self._parallel_min_elements:
            logger.debug("要素ループ並列実行: %d workers", self._n_jobs)
            with ThreadPoolExecutor(max_workers=self._n_jobs) as pool:
                return list(pool.map(func, *iterables))
        return list(map(func, *iterables))

    def _gather_local_states(self, fem_state: FemState) -> list[ElementLocalState]:
        x = fem_state.positions
        v = fem_state.velocities
        a = fem_state.accelerations
        return [
            ElementLocalState(x[e.dof_indices], v[e.dof_indices], a[e.dof_indices])
            for e in self._elements
        ]

    def _calc_element_data(self, fem_state: FemState) -> list[Any]:
        """キャッシュエントリ "element_data" の計算関数."""
        compute_data = self.element_type.compute_data
        return self._map_elements(
            compute_data, self._elements, self._gather_local_states(fem_state)
        )

    def _eval_element_data(self, fem_state: FemState) -> list[Any]:
        # 互換な状態はキャッシュ構成が同一なのでインデックスも共通。
        # 計算関数はこのモデルのものを渡す（他モデル由来の状態でも自分の要素で計算）
        return fem_state.eval_cache_entry(self._element_data_index, self._calc_element_data)

    def _do_calc_residual(self, fem_state: FemState, residual: np.ndarray) -> None:
        element_data = self._eval_element_data(fem_state)
        local_states = self._gather_local_states(fem_state)
        plant_data = self.plant_data
        calc_residual = self.element_type.calc_residual

        def local_residual(element: ElementT, data: Any, local: ElementLocalState) -> np.ndarray:
            return calc_residual(element, data, local, plant_data)

        contributions = self._map_elements(
            local_residual, self._elements, element_data, local_states
        )

        # 挿入順に散布加算（加算順序を固定して再現性を保証）
        assembled = np.zeros(self.num_dofs, dtype=float)
        for element, g_e in zip(self._elements, contributions, strict=True):
            np.add.at(assembled, element.dof_indices, g_e)
        residual[:] = assembled

    def _do_calc_tangent_matrix(
        self,
        fem_state: FemState,
        weights: TangentWeights,
        tangent_matrix: SymmetricBlockSparseMatrix,
    ) -> None:
        element_data = self._eval_element_data(fem_state)
        calc_stiffness = self.element_type.calc_stiffness_matrix
        calc_damping = self.element_type.calc_damping_matrix
        calc_mass = self.element_type.calc_mass_matrix
        w_k, w_d, w_m = weights

        def local_tangent(element: ElementT, data: Any) -> np.ndarray:
            block = np.zeros((element.ndof, element.ndof), dtype=float)
            # 重みゼロの項は計算しない
            if w_k != 0.0:
                block += w_k * calc_stiffness(element, data)
            if w_d != 0.0:
                block += w_d * calc_damping(element, data)
            if w_m != 0.0:
                block += w_m * calc_mass(element, data)
            return block

        blocks = self._map_elements(local_tangent, self._elements, element_data)

        for element, locations, block in zip(
            self._elements, self._block_locations, blocks, strict=True
        ):
            tangent_matrix.add_to_block(element.node_indices, block, locations)
