"""直方体の構造化四面体メッシュ生成.

各セル（直方体）を主対角線 (0,0,0)-(1,1,1) を共有する 6 個の四面体に分割する
（Kuhn 分割）。全セルで同じ対角線を使うので面は適合する。
"""

from __future__ import annotations

from itertools import permutations

import numpy as np

# セル局所の頂点オフセット（軸順 x, y, z）
_AXES = np.eye(3, dtype=np.int64)


def make_box_tet_mesh(
    nx: int,
    ny: int,
    nz: int,
    size: tuple[float, float, float] = (1.0, 1.0, 1.0),
    origin: tuple[float, float, float] = (0.0, 0.0, 0.0),
) -> tuple[np.ndarray, np.ndarray]:
    """直方体を四面体メッシュに分割する.

    Args:
        nx, ny, nz: 各方向のセル分割数
        size: (Lx, Ly, Lz) 直方体の寸法
        origin: 最小角の座標

    Returns:
        nodes: ((nx+1)(ny+1)(nz+1), 3) 節点座標。
            節点番号 = i + (nx+1)·(j + (ny+1)·k)
        tets: (6·nx·ny·nz, 4) 四面体の節点インデックス（全て正の向き）
    """
    if min(nx, ny, nz) < 1:
        raise ValueError(f"分割数は1以上: {(nx, ny, nz)}")
    lx, ly, lz = size
    xs = origin[0] + np.linspace(0.0, lx, nx + 1)
    ys = origin[1] + np.linspace(0.0, ly, ny + 1)
    zs = origin[2] + np.linspace(0.0, lz, nz + 1)
    Z, Y, X = np.meshgrid(zs, ys, xs, indexing="ij")
    nodes = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])

    def node_id(ijk: np.ndarray) -> np.ndarray:
        return ijk[..., 0] + (nx + 1) * (ijk[..., 1] + (ny + 1) * ijk[..., 2])

    # 6 個の四面体の頂点オフセット: v0, v0+e_p1, v0+e_p1+e_p2, v0+e_p1+e_p2+e_p3
    local = []
    for p in permutations(range(3)):
        path = [np.zeros(3, dtype=np.int64)]
        for axis in p:
            path.append(path[-1] + _AXES[axis])
        local.append(np.array(path))
    local = np.array(local)  # (6, 4, 3)

    ii, jj, kk = np.meshgrid(np.arange(nx), np.arange(ny), np.arange(nz), indexing="ij")
    base = np.column_stack([ii.ravel(), jj.ravel(), kk.ravel()])  # (ncell, 3)
    corners = base[:, None, None, :] + local[None, :, :, :]  # (ncell, 6, 4, 3)
    tets = node_id(corners).reshape(-1, 4)

    # 負の向きの四面体は節点 1, 2 を入れ替える
    X0 = nodes[tets[:, 0]]
    Dm = np.stack([nodes[tets[:, m]] - X0 for m in (1, 2, 3)], axis=2)
    negative = np.linalg.det(Dm) < 0.0
    tets[negative] = tets[negative][:, [0, 2, 1, 3]]
    return nodes, tets
