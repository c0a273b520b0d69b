from typing import Optional

import matplotlib.pyplot as plt
import polars as pl


class GlobalLogVisualizer:
    """
    Plots the global quantities written during a run.

    Parameters
    ----------
    file_path : str
        Path of a ``<name>_global.gpl`` file.
    """

    def __init__(self, file_path: str):
        with open(file_path, "r") as f:
            first = f.readline().split()
        self.dimensions = len(first) - 3
        columns = ["Time", "Flux", "Area"] + [f"Center{d}" for d in range(self.dimensions)]

        self.df = pl.read_csv(file_path, separator=" ", has_header=False, new_columns=columns)

    def plot(self, save_path: Optional[str] = None):
        """
        Flux, solid area and centre of mass against time.

        Parameters
        ----------
        save_path : str, optional
            Where to save the figure. Shown interactively when omitted.
        """
        fig, axes = plt.subplots(3, 1, figsize=(10, 10), sharex=True)
        time = self.df["Time"]

        axes[0].plot(time, self.df["Flux"], linewidth=2)
        axes[0].set_ylabel("Boundary flux")

        axes[1].plot(time, self.df["Area"], linewidth=2)
        axes[1].set_ylabel("Solid area")

        for d in range(self.dimensions):
            axes[2].plot(time, self.df[f"Center{d}"], label=f"Direction {d}", linewidth=2)
        axes[2].set_ylabel("Centre of mass")
        axes[2].set_xlabel("Time")
        axes[2].legend()

        for ax in axes:
            ax.grid(True, linestyle="--", alpha=0.7)

        if save_path:
            fig.savefig(save_path, dpi=150, bbox_inches="tight")
            plt.close(fig)
        else:
            plt.show()
        return fig
