"""
Post-processing package for fem_immersed.

- BoundaryFlux / solid_area_and_centre: global quantities of each step
- GlobalLogWriter / SnapshotWriter: text log, VTU snapshots and PVD collection
- RingExactSolution / compute_errors: error norms of the fiber ring benchmark
- GlobalLogVisualizer: plots of the global log
"""

from fem_immersed.postprocess.diagnostics import BoundaryFlux, solid_area_and_centre
from fem_immersed.postprocess.exact import (
    ErrorNorms,
    RingExactSolution,
    append_error_row,
    compute_errors,
)
from fem_immersed.postprocess.output import GlobalLogWriter, SnapshotWriter
from fem_immersed.postprocess.plots import GlobalLogVisualizer

__all__ = [
    "BoundaryFlux",
    "solid_area_and_centre",
    "ErrorNorms",
    "RingExactSolution",
    "append_error_row",
    "compute_errors",
    "GlobalLogWriter",
    "SnapshotWriter",
    "GlobalLogVisualizer",
]
