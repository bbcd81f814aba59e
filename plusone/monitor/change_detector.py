"""Frame change scoring for the screen monitor.

Each frame is box-filtered down to a small grid and compared with the previous
grid. A sample counts as changed when the summed per-channel absolute
difference exceeds a threshold; the change score is the percentage of changed
samples. The first frame after a reset has no predecessor and scores 100.
"""

from typing import Optional

import numpy as np
from PIL import Image

from plusone.config import settings

FULL_CHANGE = 100.0


class ChangeDetector:
    """Keeps the previous downsampled frame and scores each new one against it."""

    def __init__(
        self,
        grid_size: Optional[int] = None,
        pixel_threshold: Optional[int] = None,
    ):
        self.grid_size = grid_size or settings.change_grid_size
        self.pixel_threshold = (
            pixel_threshold if pixel_threshold is not None else settings.change_pixel_threshold
        )
        self._previous: Optional[np.ndarray] = None

    @property
    def has_reference(self) -> bool:
        return self._previous is not None

    def reset(self) -> None:
        """Forget the previous frame so the next one scores as fully changed."""
        self._previous = None

    def downsample(self, frame: np.ndarray) -> np.ndarray:
        """
        Shrink an RGB(A) or grayscale frame to a grid x grid image.

        Each grid cell is the average of the pixels it covers (box filter),
        so detail smaller than a cell still moves its value.

        Args:
            frame: Array of shape (height, width) or (height, width, channels)

        Returns:
            int16 array of shape (grid, grid, 3)

        Raises:
            ValueError: If the frame has no pixels
        """
        height, width = frame.shape[:2]
        if height == 0 or width == 0:
            raise ValueError("Cannot downsample an empty frame")

        pixels = frame if frame.ndim == 2 else frame[..., :3]
        image = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
        small = image.convert("RGB").resize(
            (self.grid_size, self.grid_size), Image.Resampling.BOX
        )
        return np.asarray(small, dtype=np.int16)

    def compare(self, current: np.ndarray, previous: np.ndarray) -> float:
        """Percentage of grid samples that differ beyond the threshold."""
        diff = np.abs(current - previous).sum(axis=-1)
        changed = int(np.count_nonzero(diff > self.pixel_threshold))
        return changed / (self.grid_size * self.grid_size) * 100

    def score(self, frame: np.ndarray) -> float:
        """Score `frame` against the previous one and keep it as the new reference."""
        current = self.downsample(frame)
        previous, self._previous = self._previous, current
        if previous is None:
            return FULL_CHANGE
        return self.compare(current, previous)
