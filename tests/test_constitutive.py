import numpy as np
import pytest

from fem_immersed.constitutive import (
    CircumferentialFiber,
    NeoHookeanINH0,
    NeoHookeanINH1,
    create_law,
    shape_gradient_variations,
)
from fem_immersed.core.errors import ConfigurationError

LAWS = [
    NeoHookeanINH0(2.0, 2),
    NeoHookeanINH1(2.0, 2),
    CircumferentialFiber(2.0, 2, center=(0.5, 0.5)),
]


@pytest.fixture
def deformation():
    rng = np.random.default_rng(11)
    F = np.eye(2) + 0.2 * rng.standard_normal((2, 2))
    dF = rng.standard_normal((3, 2, 2))
    X = np.array([0.8, 0.3])
    return F, dF, X


def central_difference(function, F, dF, h=1e-6):
    return np.stack([(function(F + h * d) - function(F - h * d)) / (2 * h) for d in dF])


@pytest.mark.parametrize("law", LAWS, ids=lambda law: law.name)
class TestElasticLaws:
    def test_stress_derivative(self, law, deformation):
        F, dF, X = deformation
        expected = central_difference(lambda G: law.stress(G, X), F, dF)
        assert np.allclose(law.stress_derivative(F, dF, X), expected, atol=1e-6)

    def test_stress_FT_derivative(self, law, deformation):
        F, dF, X = deformation
        expected = central_difference(lambda G: law.stress_FT(G, X), F, dF)
        assert np.allclose(law.stress_FT_derivative(F, dF, X), expected, atol=1e-6)

    def test_vectorized(self, law, deformation):
        F, dF, X = deformation
        stack_F = np.broadcast_to(F, (4, 5, 2, 2))
        stack_X = np.broadcast_to(X, (4, 5, 2))
        stack_dF = np.broadcast_to(dF, (4, 5) + dF.shape)
        result = law.stress_FT_derivative(stack_F, stack_dF, stack_X)
        assert result.shape == (4, 5, 3, 2, 2)
        assert np.allclose(result[2, 3], law.stress_FT_derivative(F, dF, X))


class TestStressValues:
    def test_inh0_is_stress_free_at_rest(self):
        law = NeoHookeanINH0(1.0, 3)
        assert np.allclose(law.stress(np.eye(3), np.zeros(3)), 0.0)

    def test_inh1(self):
        law = NeoHookeanINH1(3.0, 2)
        assert np.allclose(law.stress(np.eye(2), np.zeros(2)), 3.0 * np.eye(2))

    def test_fiber_direction(self):
        law = CircumferentialFiber(1.0, 2, center=(0.0, 0.0))
        # On the x axis the fibers run along y
        assert np.allclose(law.stress(np.eye(2), np.array([2.0, 0.0])), [[0, 0], [0, 1]])
        assert np.allclose(law.fiber_tensor(np.zeros(2)), 0.0)


class TestShapeGradientVariations:
    def test_layout(self):
        gradients = np.arange(12, dtype=float).reshape(1, 1, 6, 2)
        dF = shape_gradient_variations(gradients, 2)
        assert dF.shape == (1, 1, 12, 2, 2)
        # Local dof 5 is base function 2, component 1
        assert np.allclose(dF[0, 0, 5], [[0, 0], [4, 5]])
        assert np.allclose(dF[0, 0, 4], [[4, 5], [0, 0]])


class TestCreateLaw:
    def test_by_name(self):
        assert isinstance(create_law("INH_0", 1.0, 2), NeoHookeanINH0)
        law = create_law("CircumferentialFiberModel", 1.0, 2, center=[0.5, 0.5])
        assert np.allclose(law.center, [0.5, 0.5])

    def test_errors(self):
        with pytest.raises(ConfigurationError):
            create_law("SaintVenant", 1.0, 2)
        with pytest.raises(ConfigurationError):
            create_law("CircumferentialFiberModel", 1.0, 3)
        with pytest.raises(ConfigurationError):
            NeoHookeanINH1(-1.0, 2)
