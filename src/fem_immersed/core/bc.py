"""
Boundary condition management for the fluid velocity.

Prescribed values are given as expressions in ``x, y, z, t`` that are parsed
with sympy and evaluated with numpy at the support points of the constrained
dofs. The resulting boundary-value overlay is recomputed at every time step.
"""

import logging
from typing import Iterable, NamedTuple, Optional, Sequence

import numpy as np
import sympy

from fem_immersed.core.errors import ConfigurationError
from fem_immersed.fem.dofs import DoFHandler

logger = logging.getLogger(__name__)

x_sym, y_sym, z_sym, t_sym = sympy.symbols("x y z t", real=True)
ARGUMENTS = (x_sym, y_sym, z_sym, t_sym)


class ParsedFunction:
    """Vector-valued function of space and time defined by expression strings.

    Parameters
    ----------
    expressions : sequence of str
        One expression per component. A single expression is used for every
        component.
    n_components : int
        Number of components.

    Examples
    --------
    >>> f = ParsedFunction(["sin(pi*x)*t", "0"], 2)
    >>> f(np.array([[0.5, 0.0]]), t=2.0)
    array([[2., 0.]])
    """

    def __init__(self, expressions: Sequence[str], n_components: int):
        expressions = list(expressions) if expressions else ["0"]
        if len(expressions) == 1:
            expressions = expressions * n_components
        if len(expressions) != n_components:
            raise ConfigurationError(
                f"Expected {n_components} expressions, got {len(expressions)}: {expressions}"
            )

        symbols = {s.name: s for s in ARGUMENTS}
        self.expressions = []
        for text in expressions:
            try:
                expr = sympy.sympify(str(text), locals=symbols)
            except (sympy.SympifyError, SyntaxError, TypeError) as exc:
                raise ConfigurationError(f"Cannot parse expression '{text}': {exc}") from exc
            unknown = expr.free_symbols - set(ARGUMENTS)
            if unknown:
                raise ConfigurationError(
                    f"Expression '{text}' uses unknown symbols {sorted(s.name for s in unknown)}; "
                    "only x, y, z and t are available"
                )
            self.expressions.append(expr)

        self.n_components = n_components
        self._functions = [sympy.lambdify(ARGUMENTS, expr, modules="numpy") for expr in self.expressions]

    @property
    def is_zero(self) -> bool:
        return all(expr == 0 for expr in self.expressions)

    @property
    def is_time_dependent(self) -> bool:
        return any(t_sym in expr.free_symbols for expr in self.expressions)

    def __call__(self, points: np.ndarray, t: float = 0.0) -> np.ndarray:
        """Values at ``points`` (n x dim), shape (n x n_components)."""
        points = np.asarray(points, dtype=float)
        n = len(points)
        coords = np.zeros((n, 3))
        coords[:, : points.shape[1]] = points
        columns = [
            np.broadcast_to(np.asarray(f(coords[:, 0], coords[:, 1], coords[:, 2], t), dtype=float), (n,))
            for f in self._functions
        ]
        return np.stack(columns, axis=1) if columns else np.zeros((n, 0))

    def __repr__(self) -> str:
        return f"ParsedFunction({[str(e) for e in self.expressions]})"


class DirichletCondition:
    """Prescribed velocity on the boundary facets spanned by a node set.

    Parameters
    ----------
    nodeset : str
        Name of the node set.
    vertices : Iterable[int]
        Mesh node indices of the node set.
    function : ParsedFunction
        Prescribed values, one expression per constrained component.
    components : sequence of int, optional
        Constrained velocity components. All of them by default.
    """

    def __init__(
        self,
        nodeset: str,
        vertices: Iterable[int],
        function: ParsedFunction,
        components: Optional[Sequence[int]] = None,
    ):
        self.nodeset = nodeset
        self.vertices = np.asarray(list(vertices), dtype=int)
        self.function = function
        self.components = tuple(components) if components is not None else None

    def __repr__(self) -> str:
        return f"<DirichletCondition '{self.nodeset}' {self.function!r} components={self.components}>"


class BoundaryValues(NamedTuple):
    """Constrained dofs (sorted) and the values they must take."""

    dofs: np.ndarray
    values: np.ndarray

    def as_dict(self) -> dict:
        return dict(zip(self.dofs.tolist(), self.values.tolist()))


class BoundaryConditionManager:
    """Builds the boundary-value overlay of the fluid dofs.

    Parameters
    ----------
    dof_handler : DoFHandler
        Fluid dof layout.
    conditions : Iterable[DirichletCondition]
        Conditions in order of application; later ones override earlier ones
        on shared dofs.
    fix_pressure : bool, optional
        Also constrain the first pressure dof to zero.

    Attributes
    ----------
    all_dirichlet : bool
        True when every boundary facet is constrained on every velocity
        component, so that the pressure is only defined up to a constant.
    """

    def __init__(
        self,
        dof_handler: DoFHandler,
        conditions: Iterable[DirichletCondition],
        fix_pressure: bool = False,
    ):
        self.dof_handler = dof_handler
        self.conditions = list(conditions)
        self.fix_pressure = fix_pressure
        self.pressure_dof = dof_handler.first_scalar_dof

        nc = dof_handler.fe.n_components
        self._entries = []
        covered = np.zeros((len(dof_handler.boundary_facets.cells), nc), dtype=bool)
        for condition in self.conditions:
            components = (
                list(range(nc)) if condition.components is None else list(condition.components)
            )
            if condition.function.n_components != len(components):
                raise ConfigurationError(
                    f"Condition on '{condition.nodeset}' has {condition.function.n_components} "
                    f"values for {len(components)} components"
                )
            dofs, nodes = dof_handler.boundary_dofs(condition.vertices, components)
            if dofs.size == 0:
                logger.warning(
                    "Dirichlet condition on '%s' does not constrain any dof", condition.nodeset
                )
            column = np.tile(np.arange(len(components)), len(dofs) // max(len(components), 1))
            self._entries.append((condition, dofs, nodes, column))
            covered[np.ix_(dof_handler.facets_on(condition.vertices), components)] = True

        self.all_dirichlet = bool(covered.size) and bool(np.all(covered))
        logger.debug(
            "%d Dirichlet conditions, all boundaries essential: %s",
            len(self.conditions),
            self.all_dirichlet,
        )

    @classmethod
    def from_config(
        cls, dof_handler: DoFHandler, bc_configs: Iterable, fix_pressure: bool = False
    ) -> "BoundaryConditionManager":
        """Resolve node sets and parse expressions of ``DirichletBCConfig`` entries."""
        mesh = dof_handler.mesh
        nc = dof_handler.fe.n_components
        conditions = []
        for bc in bc_configs:
            if bc.nodeset not in mesh.node_sets:
                raise ConfigurationError(
                    f"Node set '{bc.nodeset}' not found in mesh. "
                    f"Available: {list(mesh.node_sets.keys())}"
                )
            n_components = len(bc.components) if bc.components is not None else nc
            conditions.append(
                DirichletCondition(
                    bc.nodeset,
                    mesh.node_set_indices(bc.nodeset),
                    ParsedFunction(bc.value, n_components),
                    bc.components,
                )
            )
        return cls(dof_handler, conditions, fix_pressure)

    def boundary_values(self, t: float) -> BoundaryValues:
        """Overlay of prescribed values at time ``t``."""
        values = np.full(self.dof_handler.n_dofs, np.nan)
        points = self.dof_handler.node_points
        for condition, dofs, nodes, column in self._entries:
            if dofs.size == 0:
                continue
            evaluated = condition.function(points[nodes], t)
            values[dofs] = evaluated[np.arange(len(dofs)), column]
        if self.fix_pressure:
            values[self.pressure_dof] = 0.0
        dofs = np.flatnonzero(~np.isnan(values))
        return BoundaryValues(dofs, values[dofs])

    def apply(self, xi: np.ndarray, t: float) -> BoundaryValues:
        """Impose the prescribed values at time ``t`` on the fluid block of ``xi``."""
        overlay = self.boundary_values(t)
        xi[overlay.dofs] = overlay.values
        return overlay
