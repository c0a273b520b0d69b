from typing import List, Optional, Tuple

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix


class SparseSystem:
    """
    Global residual and Jacobian accumulated from local contributions.

    Contributions are stored as (index, value) chunks and summed only when the
    global objects are requested: the residual with ``numpy.bincount`` and the
    Jacobian through a COO -> CSR conversion. Both sum in insertion order, so
    identical contributions always produce bit-identical results.

    Parameters
    ----------
    n_dofs : int
        Size of the global system.
    with_jacobian : bool
        Whether Jacobian contributions are recorded.
    """

    def __init__(self, n_dofs: int, with_jacobian: bool = True):
        self.n_dofs = n_dofs
        self.with_jacobian = with_jacobian
        self._res_index: List[np.ndarray] = []
        self._res_value: List[np.ndarray] = []
        self._rows: List[np.ndarray] = []
        self._cols: List[np.ndarray] = []
        self._vals: List[np.ndarray] = []

    def add_residual(self, dofs: np.ndarray, values: np.ndarray) -> None:
        """Add ``values`` to the residual rows ``dofs`` (any matching shapes)."""
        dofs = np.asarray(dofs)
        self._res_index.append(dofs.ravel())
        self._res_value.append(np.broadcast_to(values, dofs.shape).ravel().astype(float))

    def add_local_matrices(
        self, row_dofs: np.ndarray, col_dofs: np.ndarray, matrices: np.ndarray
    ) -> None:
        """
        Add a stack of local matrices.

        Parameters
        ----------
        row_dofs : np.ndarray
            Global rows of each local matrix (n x a).
        col_dofs : np.ndarray
            Global columns of each local matrix (n x b).
        matrices : np.ndarray
            Local matrices (n x a x b).
        """
        if not self.with_jacobian:
            return
        rows = np.broadcast_to(row_dofs[:, :, None], matrices.shape)
        cols = np.broadcast_to(col_dofs[:, None, :], matrices.shape)
        self.add_entries(rows, cols, matrices)

    def add_entries(self, rows: np.ndarray, cols: np.ndarray, values: np.ndarray) -> None:
        """Add individual Jacobian entries."""
        if not self.with_jacobian:
            return
        self._rows.append(np.asarray(rows, dtype=np.int64).ravel())
        self._cols.append(np.asarray(cols, dtype=np.int64).ravel())
        self._vals.append(np.asarray(values, dtype=float).ravel())

    def residual(self) -> np.ndarray:
        """Summed residual vector."""
        if not self._res_index:
            return np.zeros(self.n_dofs)
        return np.bincount(
            np.concatenate(self._res_index),
            weights=np.concatenate(self._res_value),
            minlength=self.n_dofs,
        )

    def triplets(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """All Jacobian entries recorded so far, unsummed."""
        if not self._rows:
            empty = np.array([], dtype=np.int64)
            return empty, empty, np.array([], dtype=float)
        return np.concatenate(self._rows), np.concatenate(self._cols), np.concatenate(self._vals)

    def drop_rows(self, rows: np.ndarray) -> None:
        """Discard every Jacobian entry recorded in ``rows``."""
        if not self.with_jacobian or not self._rows:
            return
        mask = np.zeros(self.n_dofs, dtype=bool)
        mask[np.asarray(rows, dtype=np.int64)] = True
        r, c, v = self.triplets()
        keep = ~mask[r]
        self._rows, self._cols, self._vals = [r[keep]], [c[keep]], [v[keep]]

    def jacobian(self) -> Optional[csr_matrix]:
        """Summed Jacobian in CSR format, or None without Jacobian."""
        if not self.with_jacobian:
            return None
        r, c, v = self.triplets()
        return coo_matrix((v, (r, c)), shape=(self.n_dofs, self.n_dofs)).tocsr()

    def __repr__(self) -> str:
        n_entries = sum(len(v) for v in self._vals)
        return f"<SparseSystem n_dofs={self.n_dofs} entries={n_entries}>"
