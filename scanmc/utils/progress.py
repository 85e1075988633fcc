"""Progress tracking for long sampling runs.

Sampling blocks are reported through tqdm. With progress disabled only a
closing debug record with the sampling rate is emitted.
"""

import time

from tqdm import tqdm

from scanmc.utils.logging import get_logger

logger = get_logger(__name__)


class SamplingProgress:
    """Progress tracker counting Markov chain steps or PMC draws."""

    def __init__(
        self,
        total: int,
        desc: str = "Sampling",
        unit: str = "step",
        verbose: bool = True,
    ):
        """Initialize progress tracker.

        Parameters
        ----------
        total : int
            Number of steps expected in total
        desc : str
            Description for progress display
        unit : str
            Unit label shown by tqdm
        verbose : bool
            Whether to draw a progress bar
        """
        self.total = total
        self.desc = desc
        self.verbose = verbose
        self.count = 0
        self.start_time = time.time()

        if self.verbose:
            self.pbar = tqdm(total=total, desc=desc, unit=unit, leave=False)
        else:
            self.pbar = None

    def update(self, n: int = 1, **postfix):
        """Advance by n steps, optionally updating the postfix fields."""
        self.count += n
        if self.pbar is None:
            return
        self.pbar.update(n)
        if postfix:
            self.pbar.set_postfix(postfix)

    def close(self):
        """Close progress display and log final statistics."""
        if self.pbar is not None:
            self.pbar.close()

        elapsed = time.time() - self.start_time
        rate = self.count / elapsed if elapsed > 0 else 0.0
        logger.debug(
            f"{self.desc}: {self.count} steps in {elapsed:.1f}s ({rate:.1f} steps/s)"
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
