"""FEM 状態（節点位置・速度・加速度）と派生量キャッシュの管理.

FemStateSystem:
  DOF 数・参照位置・キャッシュエントリ宣言を保持する。FemModel が所有し、
  要素追加後に作り直される。FemState はこのシステムからのみ生成する。

FemState:
  状態ベクトル 3 本と、依存関係付きキャッシュを保持する。
  各状態ベクトルは更新のたびに世代番号が進み、キャッシュ値は計算時の
  依存先世代番号の組と一緒に保存される。読み出しは eval_cache_entry()
  （get-or-compute）のみで、世代番号が一致しない値は必ず再計算される。
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

import numpy as np

from femdyn.core.results import CacheEntryDescriptor

logger = logging.getLogger(__name__)

POSITIONS = "positions"
VELOCITIES = "velocities"
ACCELERATIONS = "accelerations"
ALL_STATE_DEPENDENCIES = frozenset({POSITIONS, VELOCITIES, ACCELERATIONS})


class FemStateSystem:
    """FemState の生成元. DOF 数とキャッシュエントリ宣言を管理する.

    Args:
        reference_positions: (num_dofs,) 参照配置の節点位置（3 の倍数長）
    """

    def __init__(self, reference_positions: np.ndarray) -> None:
        q0 = np.asarray(reference_positions, dtype=float).ravel()
        if q0.size % 3 != 0:
            raise ValueError(f"参照位置の長さは 3 の倍数が必要: {q0.size}")
        self._reference_positions = q0
        self._reference_positions.setflags(write=False)
        self._cache_entries: list[CacheEntryDescriptor] = []

    @property
    def num_dofs(self) -> int:
        return int(self._reference_positions.size)

    @property
    def reference_positions(self) -> np.ndarray:
        return self._reference_positions

    @property
    def cache_entries(self) -> tuple[CacheEntryDescriptor, ...]:
        return tuple(self._cache_entries)

    @property
    def cache_schema(self) -> tuple[tuple[str, frozenset[str]], ...]:
        """状態互換性判定に使うキャッシュ構成（名前と依存先の組）."""
        return tuple((e.name, e.dependencies) for e in self._cache_entries)

    def declare_cache_entry(
        self,
        name: str,
        calc: Callable[[FemState], Any],
        dependencies: Iterable[str] = ALL_STATE_DEPENDENCIES,
    ) -> int:
        """キャッシュエントリを宣言し、そのインデックスを返す.

        Args:
            name: 計算の識別名（システム内で一意）
            calc: FemState を受け取り値を返す関数
            dependencies: 依存する状態ベクトル名

        Returns:
            index: eval_cache_entry() に渡すインデックス
        """
        deps = frozenset(dependencies)
        unknown = deps - ALL_STATE_DEPENDENCIES
        if unknown:
            raise ValueError(f"未知の依存先: {sorted(unknown)}")
        if any(e.name == name for e in self._cache_entries):
            raise ValueError(f"キャッシュエントリ '{name}' は宣言済み")
        self._cache_entries.append(CacheEntryDescriptor(name, calc, deps))
        return len(self._cache_entries) - 1

    def cache_index(self, name: str) -> int:
        """名前からキャッシュエントリのインデックスを返す."""
        for i, e in enumerate(self._cache_entries):
            if e.name == name:
                return i
        raise KeyError(name)

    def make_state(self) -> FemState:
        """参照位置・速度ゼロ・加速度ゼロの FemState を生成する."""
        return FemState(self)


class FemState:
    """FEM 状態 (x, v, a) と依存関係付きキャッシュ.

    FemStateSystem.make_state() 経由で生成すること。
    状態ベクトルは読み出し専用ビューで返し、変更は set_* のみで行う。
    """

    def __init__(self, system: FemStateSystem) -> None:
        self._system = system
        n = system.num_dofs
        self._vectors = {
            POSITIONS: system.reference_positions.copy(),
            VELOCITIES: np.zeros(n, dtype=float),
            ACCELERATIONS: np.zeros(n, dtype=float),
        }
        self._versions = {POSITIONS: 0, VELOCITIES: 0, ACCELERATIONS: 0}
        self._cache: list[tuple[tuple, Any] | None] = [None] * len(
            system.cache_entries
        )
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # サイズ・互換性
    # ------------------------------------------------------------------

    @property
    def num_dofs(self) -> int:
        return self._system.num_dofs

    @property
    def num_nodes(self) -> int:
        return self.num_dofs // 3

    @property
    def cache_schema(self) -> tuple[tuple[str, frozenset[str]], ...]:
        return self._system.cache_schema

    def is_created_from_system(self, system: FemStateSystem) -> bool:
        return self._system is system

    # ------------------------------------------------------------------
    # 状態ベクトル
    # ------------------------------------------------------------------

    @property
    def positions(self) -> np.ndarray:
        return self._readonly(POSITIONS)

    @property
    def velocities(self) -> np.ndarray:
        return self._readonly(VELOCITIES)

    @property
    def accelerations(self) -> np.ndarray:
        return self._readonly(ACCELERATIONS)

    def set_positions(self, q: np.ndarray) -> None:
        self._set(POSITIONS, q)

    def set_velocities(self, v: np.ndarray) -> None:
        self._set(VELOCITIES, v)

    def set_accelerations(self, a: np.ndarray) -> None:
        self._set(ACCELERATIONS, a)

    def version(self, name: str) -> int:
        """状態ベクトル name の世代番号（set_* ごとに 1 増える）."""
        return self._versions[name]

    def _readonly(self, name: str) -> np.ndarray:
        view = self._vectors[name].view()
        view.setflags(write=False)
        return view

    def _set(self, name: str, value: np.ndarray) -> None:
        value = np.asarray(value, dtype=float)
        if value.shape != (self.num_dofs,):
            raise ValueError(f"{name} のサイズは ({self.num_dofs},) が必要。実際: {value.shape}")
        with self._lock:
            self._vectors[name] = value.copy()
            self._versions[name] += 1

    # ------------------------------------------------------------------
    # キャッシュ
    # ------------------------------------------------------------------

    def eval_cache_entry(self, index: int, calc: Callable[[FemState], Any] | None = None) -> Any:
        """キャッシュ値を返す. 無効（未計算・依存先更新済み）なら再計算する.

        初回計算はロックで直列化されるので、複数スレッドから同時に
        呼ばれても計算は 1 回だけ行われる。

        Args:
            index: declare_cache_entry() が返したインデックス
            calc: 計算関数。None なら宣言時の関数。キャッシュ値は計算関数ごとに
                区別されるので、別モデルの calc で評価すると再計算される。
        """
        entry = self._system.cache_entries[index]
        calc = entry.calc if calc is None else calc
        with self._lock:
            stamp = self._stamp(entry, calc)
            cached = self._cache[index]
            if cached is not None and cached[0] == stamp:
                return cached[1]
            logger.debug("キャッシュ再計算: %s", entry.name)
            value = calc(self)
            self._cache[index] = (stamp, value)
            return value

    def is_cache_entry_valid(
        self, index: int, calc: Callable[[FemState], Any] | None = None
    ) -> bool:
        entry = self._system.cache_entries[index]
        calc = entry.calc if calc is None else calc
        cached = self._cache[index]
        return cached is not None and cached[0] == self._stamp(entry, calc)

    def _stamp(self, entry: CacheEntryDescriptor, calc: Callable[[FemState], Any]) -> tuple:
        # 束縛メソッドは __self__ の同一性で比較される
        return (calc, *(self._versions[d] for d in sorted(entry.dependencies)))

    # ------------------------------------------------------------------
    # 複製
    # ------------------------------------------------------------------

    def clone(self) -> FemState:
        """同じシステム由来の独立な複製を返す（キャッシュは未計算状態）."""
        other = FemState(self._system)
        other.copy_from(self)
        return other

    def copy_from(self, other: FemState) -> None:
        """other の状態ベクトルをコピーする. 同一システム由来であること."""
        if other._system is not self._system:
            raise ValueError("copy_from: 異なる FemStateSystem 由来の状態はコピーできない")
        self.set_positions(other._vectors[POSITIONS])
        self.set_velocities(other._vectors[VELOCITIES])
        self.set_accelerations(other._vectors[ACCELERATIONS])
