import re
from typing import Optional, Tuple

import numpy as np

from fem_immersed.core.errors import ConfigurationError
from fem_immersed.elements.lagrange import FE_DGP, FE_Q, ScalarElement


class FESystem:
    """Vector-valued element built from scalar base elements

    Local dofs are numbered node-major: the velocity (or displacement) dof of
    base function ``a`` and component ``c`` is ``a * n_components + c``. An
    optional scalar element (the pressure) is appended after all vector dofs.

    Parameters
    ----------
    base : ScalarElement
        Element used for every vector component.
    n_components : int
        Number of vector components (the spatial dimension).
    scalar : ScalarElement, optional
        Extra scalar field, e.g. pressure.
    """

    def __init__(
        self,
        base: ScalarElement,
        n_components: int,
        scalar: Optional[ScalarElement] = None,
    ):
        self.base = base
        self.n_components = n_components
        self.scalar = scalar
        self.dim = base.dim
        self.n_vector_dofs = base.n_dofs * n_components
        self.n_scalar_dofs = scalar.n_dofs if scalar is not None else 0
        self.dofs_per_cell = self.n_vector_dofs + self.n_scalar_dofs

        vector = np.arange(self.n_vector_dofs)
        self.component = np.concatenate(
            [vector % n_components, np.full(self.n_scalar_dofs, n_components, dtype=int)]
        )
        self.base_index = np.concatenate(
            [vector // n_components, np.arange(self.n_scalar_dofs, dtype=int)]
        )

    def system_to_component_index(self, i: int) -> Tuple[int, int]:
        """(component, index within the base element) of local dof ``i``"""
        return int(self.component[i]), int(self.base_index[i])

    def vector_dof(self, node: int, component: int) -> int:
        return node * self.n_components + component

    def scalar_dof(self, j: int) -> int:
        return self.n_vector_dofs + j

    def __repr__(self) -> str:
        name = f"FESystem[{self.base!r}^{self.n_components}"
        if self.scalar is not None:
            name += f"-{self.scalar!r}"
        return name + "]"


class ElementFactory:
    ELEMENT_MAP = {"FE_Q": FE_Q, "FE_DGP": FE_DGP}

    @staticmethod
    def get_element(name: str, degree: int, dim: int) -> ScalarElement:
        """Create a scalar element from its family name and degree."""
        try:
            element = ElementFactory.ELEMENT_MAP[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown finite element '{name}'. "
                f"Available: {list(ElementFactory.ELEMENT_MAP.keys())}"
            )
        try:
            return element(degree, dim)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

    @staticmethod
    def from_string(description: str, dim: int) -> ScalarElement:
        """Parse descriptions such as ``"FE_Q(2)"`` or ``"FE_DGP(1)"``."""
        match = re.fullmatch(r"\s*(\w+)\s*\(\s*(\d+)\s*\)\s*", description)
        if match is None:
            raise ConfigurationError(f"Cannot parse element description '{description}'")
        return ElementFactory.get_element(match.group(1), int(match.group(2)), dim)
