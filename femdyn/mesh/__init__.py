"""メッシュ生成ユーティリティ."""

from femdyn.mesh.box import make_box_tet_mesh

__all__ = [
    "make_box_tet_mesh",
]
