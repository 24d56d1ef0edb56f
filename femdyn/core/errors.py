"""使用法エラー（前提条件違反）の例外クラス.

いずれも組み込み例外のサブクラスなので、呼び出し側は
ValueError / RuntimeError としても捕捉できる。
"""

from __future__ import annotations


class ModelStateMismatchError(ValueError):
    """FEM モデルと FemState が不整合（別モデル由来・DOF 数やキャッシュ構成の不一致）."""


class BuilderConsumedError(RuntimeError):
    """build() 済みのビルダーが再利用された."""


class SparsityPatternError(ValueError):
    """接線行列の形状・非ゼロパターンがモデルと一致しない、または
    事前確保されていないブロックへの加算が要求された."""
