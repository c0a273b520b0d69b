from .elements import ElementFactory, FESystem
from .lagrange import FE_DGP, FE_Q, ScalarElement
from .quadrature import QuadratureRule, gauss, iterated_trapezoid

__all__ = [
    "ElementFactory",
    "FESystem",
    "FE_DGP",
    "FE_Q",
    "ScalarElement",
    "QuadratureRule",
    "gauss",
    "iterated_trapezoid",
]
