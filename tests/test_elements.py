"""
单元核测试：一致切线（与残量的有限差分比较）、材料模型与非物理解检测
"""

import numpy as np
import pytest

from core.exceptions import BadSolutionError, ConfigurationError
from finite_elements.assembly import ElementAssembly
from finite_elements.basis_functions import PatchBasis
from finite_elements.elements import (
    LinearElasticityKernel, NonlinearElasticityKernel, MixedNonlinearElasticityKernel,
    NavierStokesKernel, ALEKernel, create_kernel,
)
from finite_elements.mesh_generation import MultiPatch, quad_patch
from materials.elastic_materials import (
    ElasticMaterial, MaterialLaw, second_piola_kirchhoff, cauchy_stress, von_mises,
)

CORNERS = [[0.0, 0.0], [1.2, 0.1], [1.1, 1.0], [-0.1, 0.9]]


def element_values(orders):
    """扭曲四边形单元上的积分点数据"""
    geo = MultiPatch([quad_patch(CORNERS, (1, 1), order=2)])
    bases = {name: [PatchBasis(order, (1, 1))] for name, order in orders.items()}
    return geo, ElementAssembly(geo, bases, 3).element_values(0, 0, 0)


def random_state(kernel, values, scale=0.05, seed=0):
    rng = np.random.default_rng(seed)
    return {f: scale * rng.standard_normal((values.basis[f].shape[1], d))
            for f, d in kernel.fields.items()}


def finite_difference_tangent(kernel, values, state, h=1e-6):
    """Ke ≈ −∂fe/∂x（中心差分）"""
    names = list(kernel.fields)
    shapes = [state[f].shape for f in names]
    x0 = np.concatenate([state[f].T.ravel() for f in names])

    def unpack(x):
        out, offset = {}, 0
        for f, (n, d) in zip(names, shapes):
            out[f] = x[offset:offset + n * d].reshape(d, n).T
            offset += n * d
        return out

    fd = np.zeros((x0.size, x0.size))
    for j in range(x0.size):
        e = np.zeros_like(x0)
        e[j] = h
        _, fp = kernel.evaluate(values, unpack(x0 + e))
        _, fm = kernel.evaluate(values, unpack(x0 - e))
        fd[:, j] = -(fp - fm) / (2 * h)
    return fd


def assert_consistent_tangent(kernel, values, state):
    Ke, _ = kernel.evaluate(values, state)
    fd = finite_difference_tangent(kernel, values, state)
    np.testing.assert_allclose(Ke, fd, atol=1e-6 * np.abs(Ke).max())


class TestElasticityKernels:
    """弹性单元核测试"""

    def test_linear_residual(self):
        kernel = LinearElasticityKernel(ElasticMaterial(10.0, 0.3), body_force=[0.0, -1.0])
        _, values = element_values({'displacement': 2})
        state = random_state(kernel, values)
        Ke, fe = kernel.evaluate(values, state)
        _, f0 = kernel.evaluate(values, {'displacement': np.zeros_like(state['displacement'])})
        np.testing.assert_allclose(fe, f0 - Ke @ state['displacement'].T.ravel(), atol=1e-12)
        np.testing.assert_allclose(Ke, Ke.T, atol=1e-12)

    def test_linear_rigid_body_modes(self):
        """平移与无穷小转动不产生内力"""
        kernel = LinearElasticityKernel(ElasticMaterial(10.0, 0.3))
        geo, values = element_values({'displacement': 2})
        x = geo.patch(0).coefs
        Ke, _ = kernel.evaluate(values, random_state(kernel, values))
        for mode in (np.column_stack([np.ones(9), np.zeros(9)]),
                     np.column_stack([-x[:, 1], x[:, 0]])):
            np.testing.assert_allclose(Ke @ mode.T.ravel(), 0.0, atol=1e-10)

    @pytest.mark.parametrize("law", [MaterialLaw.SAINT_VENANT_KIRCHHOFF, MaterialLaw.NEO_HOOKE_LN])
    def test_nonlinear_tangent(self, law):
        kernel = NonlinearElasticityKernel(ElasticMaterial(10.0, 0.3, law=law),
                                           body_force=lambda x: np.column_stack([x[:, 1], -x[:, 0]]))
        _, values = element_values({'displacement': 2})
        assert_consistent_tangent(kernel, values, random_state(kernel, values))

    @pytest.mark.parametrize("poisson_ratio", [0.45, 0.5])
    def test_mixed_tangent(self, poisson_ratio):
        kernel = MixedNonlinearElasticityKernel(ElasticMaterial(10.0, poisson_ratio))
        _, values = element_values({'displacement': 2, 'pressure': 1})
        state = random_state(kernel, values)
        Ke, fe = kernel.evaluate(values, state)
        assert np.all(np.isfinite(Ke)) and np.all(np.isfinite(fe))
        assert_consistent_tangent(kernel, values, state)

    def test_linear_mixed_incompressible(self):
        material = ElasticMaterial(10.0, 0.5)
        with pytest.raises(ConfigurationError):
            LinearElasticityKernel(material)
        kernel = LinearElasticityKernel(material, mixed=True)
        _, values = element_values({'displacement': 2, 'pressure': 1})
        Ke, _ = kernel.evaluate(values, random_state(kernel, values))
        assert np.all(np.isfinite(Ke))
        np.testing.assert_allclose(Ke[-4:, -4:], 0.0)

    def test_incompressible_requires_mixed(self):
        with pytest.raises(ConfigurationError):
            NonlinearElasticityKernel(ElasticMaterial(10.0, 0.5))

    def test_inverted_element_raises(self):
        kernel = NonlinearElasticityKernel(ElasticMaterial(10.0, 0.3))
        geo, values = element_values({'displacement': 2})
        x = geo.patch(0).coefs
        state = {'displacement': np.column_stack([-1.5 * x[:, 0], np.zeros(9)])}
        with pytest.raises(BadSolutionError) as info:
            kernel.evaluate(values, state)
        assert info.value.patch == 0

    def test_ale_kernel_defaults(self):
        kernel = ALEKernel()
        assert kernel.material.poisson_ratio == pytest.approx(0.4)
        assert kernel.body_force is None


class TestNavierStokesKernel:
    """Navier–Stokes单元核测试"""

    def test_tangent(self):
        kernel = NavierStokesKernel(0.1, force=[1.0, 0.0])
        _, values = element_values({'velocity': 2, 'pressure': 1})
        state = random_state(kernel, values, scale=0.5)
        assert_consistent_tangent(kernel, values, state)
        assert not kernel.symmetric

    def test_invalid_viscosity(self):
        with pytest.raises(ConfigurationError):
            NavierStokesKernel(0.0)


class TestKernelFactory:
    """单元核工厂测试"""

    def test_mass_kernel(self):
        kernel = create_kernel('mass', 2.0)
        _, values = element_values({'displacement': 2})
        Ke, fe = kernel.evaluate(values, random_state(kernel, values))
        # 质量之和 = 维数 × 密度 × 面积
        assert Ke.sum() == pytest.approx(2 * 2.0 * 1.09)
        np.testing.assert_allclose(fe, 0.0)

    def test_unknown_kernel(self):
        with pytest.raises(ValueError, match="未知单元核类型"):
            create_kernel('plasticity')


class TestMaterials:
    """材料模型测试"""

    def test_lame_parameters(self):
        m = ElasticMaterial(young_modulus=1000.0, poisson_ratio=0.25)
        assert m.lame_mu == pytest.approx(400.0)
        assert m.lame_lambda == pytest.approx(400.0)
        assert np.isinf(ElasticMaterial(1.0, 0.5).lame_lambda)
        assert ElasticMaterial(1.0, 0.5).incompressible

    def test_invalid_parameters(self):
        with pytest.raises(ConfigurationError):
            ElasticMaterial(young_modulus=-1.0)
        with pytest.raises(ConfigurationError):
            ElasticMaterial(poisson_ratio=0.6)

    @pytest.mark.parametrize("law", ["saint_venant_kirchhoff", "neo_hooke_ln"])
    def test_stress_free_reference(self, law):
        m = ElasticMaterial(10.0, 0.3, law=law)
        F = np.eye(2)[None]
        np.testing.assert_allclose(second_piola_kirchhoff(F, m), 0.0, atol=1e-14)
        np.testing.assert_allclose(cauchy_stress(F, m), 0.0, atol=1e-14)

    def test_von_mises(self):
        sigma = np.array([[[2.0, 0.0], [0.0, 0.0]], [[0.0, 1.0], [1.0, 0.0]]])
        np.testing.assert_allclose(von_mises(sigma), [2.0, np.sqrt(3.0)])

    def test_to_dict(self):
        data = ElasticMaterial(5.0, 0.2, law="neo_hooke_ln").to_dict()
        assert data == {'young_modulus': 5.0, 'poisson_ratio': 0.2, 'density': 1.0,
                        'law': 'neo_hooke_ln'}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
