"""TET4 要素・構成則・箱型メッシュのテスト.

テスト構成:
- TestShapeGradients: 形状関数勾配・体積・退化検出
- TestMaterials: 構成則の応力・接線テンソル（数値微分との照合）
- TestTet4Element: 剛性・減衰・質量行列（残差の数値微分との照合）
- TestBoxMesh: 箱型メッシュの向き・体積
"""

from __future__ import annotations

import numpy as np
import pytest

from femdyn.core.results import ElementLocalState, PlantData
from femdyn.elements.tet4 import (
    LinearTetrahedron,
    tet4_mass_matrix,
    tet4_shape_gradients,
)
from femdyn.materials.damping import RayleighDamping
from femdyn.materials.elastic import (
    LinearElasticModel,
    StVenantKirchhoffModel,
    lame_parameters,
)
from femdyn.mesh.box import make_box_tet_mesh

_X_REF = np.array(
    [
        [0.0, 0.0, 0.0],
        [1.2, 0.1, 0.0],
        [0.2, 0.9, 0.1],
        [0.1, 0.2, 1.1],
    ]
)
_NO_GRAVITY = PlantData(gravity_vector=np.zeros(3))


def _element(material=None, damping=None, *, lumped_mass=False, density=1200.0):
    material = material if material is not None else StVenantKirchhoffModel(2.0e5, 0.3)
    return LinearTetrahedron(
        np.arange(4), _X_REF, material, density, damping, lumped_mass=lumped_mass
    )


def _residual(element, x, v=None, a=None, plant_data=_NO_GRAVITY):
    v = np.zeros(12) if v is None else v
    a = np.zeros(12) if a is None else a
    local = ElementLocalState(x, v, a)
    return element.calc_residual(element.compute_data(local), local, plant_data)


def _deformed(seed: int = 0, scale: float = 0.05) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return _X_REF.ravel() + scale * rng.standard_normal(12)


# ====================================================================
# 形状関数
# ====================================================================


class TestShapeGradients:
    def test_unit_tet(self):
        X = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=float)
        grads, volume = tet4_shape_gradients(X)
        assert volume == pytest.approx(1.0 / 6.0)
        expected = np.array([[-1, -1, -1], [1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=float)
        np.testing.assert_allclose(grads, expected, atol=1e-14)

    def test_partition_of_unity_and_identity_gradient(self):
        """Σ∇N_a = 0 かつ Σ X_a ⊗ ∇N_a = I."""
        grads, _ = tet4_shape_gradients(_X_REF)
        np.testing.assert_allclose(grads.sum(axis=0), 0.0, atol=1e-14)
        np.testing.assert_allclose(_X_REF.T @ grads, np.eye(3), atol=1e-14)

    def test_degenerate_rejected(self):
        X = _X_REF.copy()
        X[3] = X[0] + 0.5 * (X[1] - X[0]) + 0.5 * (X[2] - X[0])
        with pytest.raises(ValueError, match="退化"):
            tet4_shape_gradients(X)

    def test_inverted_rejected(self):
        with pytest.raises(ValueError, match="反転"):
            tet4_shape_gradients(_X_REF[[0, 2, 1, 3]])

    def test_wrong_shape(self):
        with pytest.raises(ValueError, match=r"\(4,3\)"):
            tet4_shape_gradients(np.zeros((3, 3)))


# ====================================================================
# 構成則
# ====================================================================


def _fd_dPdF(material, F: np.ndarray, h: float = 1.0e-6) -> np.ndarray:
    dPdF = np.zeros((3, 3, 3, 3))
    for k in range(3):
        for ll in range(3):
            dF = np.zeros((3, 3))
            dF[k, ll] = h
            Pp = material.calc_stress_and_tangent(F + dF).P
            Pm = material.calc_stress_and_tangent(F - dF).P
            dPdF[:, :, k, ll] = (Pp - Pm) / (2.0 * h)
    return dPdF


class TestMaterials:
    def test_lame_parameters(self):
        lam, mu = lame_parameters(1.0, 0.25)
        assert lam == pytest.approx(0.4)
        assert mu == pytest.approx(0.4)

    @pytest.mark.parametrize("E, nu", [(0.0, 0.3), (1.0, 0.5), (1.0, -1.0)])
    def test_lame_parameters_invalid(self, E, nu):
        with pytest.raises(ValueError):
            lame_parameters(E, nu)

    @pytest.mark.parametrize("cls", [LinearElasticModel, StVenantKirchhoffModel])
    def test_stress_free_reference(self, cls):
        P, _ = cls(1.0e3, 0.3).calc_stress_and_tangent(np.eye(3))
        np.testing.assert_allclose(P, 0.0, atol=1e-12)

    def test_tangents_agree_at_identity(self):
        """F = I では StVK の接線は線形弾性と一致."""
        lin = LinearElasticModel(1.0e3, 0.3).calc_stress_and_tangent(np.eye(3)).dPdF
        stvk = StVenantKirchhoffModel(1.0e3, 0.3).calc_stress_and_tangent(np.eye(3)).dPdF
        np.testing.assert_allclose(stvk, lin, rtol=1e-12, atol=1e-9)

    @pytest.mark.parametrize("cls", [LinearElasticModel, StVenantKirchhoffModel])
    def test_tangent_matches_finite_difference(self, cls):
        rng = np.random.default_rng(1)
        F = np.eye(3) + 0.2 * rng.standard_normal((3, 3))
        material = cls(1.0e3, 0.3)
        dPdF = material.calc_stress_and_tangent(F).dPdF
        np.testing.assert_allclose(dPdF, _fd_dPdF(material, F), rtol=1e-6, atol=1e-6)

    def test_rigid_rotation_stress_free_stvk(self):
        """StVK は剛体回転で応力ゼロ（線形弾性はゼロにならない）."""
        c, s = np.cos(0.7), np.sin(0.7)
        R = np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])
        P = StVenantKirchhoffModel(1.0e3, 0.3).calc_stress_and_tangent(R).P
        np.testing.assert_allclose(P, 0.0, atol=1e-9)
        P_lin = LinearElasticModel(1.0e3, 0.3).calc_stress_and_tangent(R).P
        assert np.abs(P_lin).max() > 1.0

    def test_linearity_flags(self):
        assert LinearElasticModel(1.0, 0.3).is_linear
        assert not StVenantKirchhoffModel(1.0, 0.3).is_linear


# ====================================================================
# TET4 要素
# ====================================================================


class TestTet4Element:
    def test_construction_validation(self):
        mat = LinearElasticModel(1.0, 0.3)
        with pytest.raises(ValueError, match="重複"):
            LinearTetrahedron(np.array([0, 1, 1, 3]), _X_REF, mat, 1.0)
        with pytest.raises(ValueError, match="density"):
            LinearTetrahedron(np.arange(4), _X_REF, mat, -1.0)
        with pytest.raises(ValueError, match=r"\(4,\)"):
            LinearTetrahedron(np.arange(3), _X_REF, mat, 1.0)

    def test_dof_indices(self):
        e = LinearTetrahedron(np.array([2, 0, 5, 1]), _X_REF, LinearElasticModel(1.0, 0.3), 1.0)
        np.testing.assert_array_equal(
            e.dof_indices, [6, 7, 8, 0, 1, 2, 15, 16, 17, 3, 4, 5]
        )
        assert not e.dof_indices.flags.writeable

    def test_zero_residual_at_rest(self):
        e = _element()
        np.testing.assert_allclose(_residual(e, _X_REF.ravel()), 0.0, atol=1e-9)

    @pytest.mark.parametrize("cls", [LinearElasticModel, StVenantKirchhoffModel])
    def test_stiffness_matches_finite_difference(self, cls):
        """K = ∂G/∂x（v = a = 0 で数値微分と一致）."""
        e = _element(cls(2.0e5, 0.3))
        x = _deformed(seed=2)
        K = e.calc_stiffness_matrix(e.compute_data(ElementLocalState(x, np.zeros(12), np.zeros(12))))
        h = 1.0e-6
        K_fd = np.zeros((12, 12))
        for j in range(12):
            dx = np.zeros(12)
            dx[j] = h
            K_fd[:, j] = (_residual(e, x + dx) - _residual(e, x - dx)) / (2.0 * h)
        scale = np.abs(K).max()
        np.testing.assert_allclose(K, K_fd, atol=1e-6 * scale)
        np.testing.assert_allclose(K, K.T, atol=1e-9 * scale)

    def test_rigid_translation_in_null_space(self):
        e = _element()
        data = e.compute_data(ElementLocalState(_deformed(seed=4), np.zeros(12), np.zeros(12)))
        K = e.calc_stiffness_matrix(data)
        t = np.tile([0.3, -0.2, 0.7], 4)
        np.testing.assert_allclose(K @ t, 0.0, atol=1e-9 * np.abs(K).max())

    def test_damping_is_velocity_derivative(self):
        """D = ∂G/∂v = αM + βK."""
        damping = RayleighDamping(mass_coeff=0.4, stiffness_coeff=0.02)
        e = _element(damping=damping)
        x = _deformed(seed=3)
        rng = np.random.default_rng(5)
        v = rng.standard_normal(12)
        local = ElementLocalState(x, v, np.zeros(12))
        data = e.compute_data(local)
        D = e.calc_damping_matrix(data)
        expected = 0.4 * e.calc_mass_matrix(data) + 0.02 * e.calc_stiffness_matrix(data)
        np.testing.assert_allclose(D, expected)

        # 残差は v について線形
        r0 = _residual(e, x, np.zeros(12))
        r1 = _residual(e, x, v)
        np.testing.assert_allclose(r1 - r0, D @ v, rtol=1e-10, atol=1e-8)

    def test_mass_is_acceleration_derivative(self):
        e = _element()
        x = _deformed(seed=6)
        a = np.random.default_rng(7).standard_normal(12)
        M = e.calc_mass_matrix(None)
        np.testing.assert_allclose(_residual(e, x, a=a) - _residual(e, x), M @ a, atol=1e-9)

    def test_consistent_mass(self):
        rho = 1200.0
        e = _element(density=rho)
        M = e.calc_mass_matrix(None)
        total = rho * e.volume
        np.testing.assert_allclose(M, M.T)
        # 各方向の総質量
        assert M.sum() == pytest.approx(3.0 * total)
        assert M[0, 0] == pytest.approx(total / 10.0)
        assert M[0, 3] == pytest.approx(total / 20.0)
        assert M[0, 1] == 0.0
        assert np.all(np.linalg.eigvalsh(M) > 0.0)

    def test_lumped_mass(self):
        M = tet4_mass_matrix(0.5, 8.0, lumped=True)
        np.testing.assert_allclose(M, np.eye(12))
        e = _element(lumped_mass=True)
        M = e.calc_mass_matrix(None)
        np.testing.assert_allclose(M, np.diag(np.diag(M)))
        assert np.trace(M) == pytest.approx(3.0 * 1200.0 * e.volume)

    def test_gravity_load(self):
        e = _element(density=1000.0)
        g = np.array([0.0, -9.81, 0.0])
        r = _residual(e, _X_REF.ravel(), plant_data=PlantData(gravity_vector=g))
        np.testing.assert_allclose(r.reshape(4, 3).sum(axis=0), -1000.0 * e.volume * g)

    def test_data_is_read_only(self):
        e = _element()
        data = e.compute_data(ElementLocalState(_deformed(), np.zeros(12), np.zeros(12)))
        with pytest.raises(ValueError):
            data.stiffness[0, 0] = 1.0


# ====================================================================
# 箱型メッシュ
# ====================================================================


class TestBoxMesh:
    def test_counts_and_numbering(self):
        nodes, tets = make_box_tet_mesh(3, 2, 1, size=(3.0, 2.0, 1.0))
        assert nodes.shape == (4 * 3 * 2, 3)
        assert tets.shape == (6 * 3 * 2 * 1, 4)
        # 節点番号 = i + (nx+1)·(j + (ny+1)·k)
        np.testing.assert_allclose(nodes[1 + 4 * (2 + 3 * 1)], [1.0, 2.0, 1.0])

    def test_positive_orientation_and_volume(self):
        size = (2.0, 1.5, 0.5)
        nodes, tets = make_box_tet_mesh(2, 3, 2, size=size, origin=(1.0, -1.0, 0.0))
        volumes = [tet4_shape_gradients(nodes[t])[1] for t in tets]
        assert min(volumes) > 0.0
        assert sum(volumes) == pytest.approx(np.prod(size))
        np.testing.assert_allclose(nodes.min(axis=0), [1.0, -1.0, 0.0])

    def test_invalid_division(self):
        with pytest.raises(ValueError, match="分割数"):
            make_box_tet_mesh(0, 1, 1)
