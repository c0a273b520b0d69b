"""
Constitutive models package for fem_immersed.

This package contains the elastic laws of the immersed solid and their
linearizations.
"""

from fem_immersed.constitutive.elastic import (
    LAW_MAP,
    CircumferentialFiber,
    ElasticLaw,
    NeoHookeanINH0,
    NeoHookeanINH1,
    create_law,
    shape_gradient_variations,
)

__all__ = [
    "LAW_MAP",
    "ElasticLaw",
    "NeoHookeanINH0",
    "NeoHookeanINH1",
    "CircumferentialFiber",
    "create_law",
    "shape_gradient_variations",
]
