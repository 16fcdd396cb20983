"""
Utility functions for face2pose.

This module provides helper functions used across the library:
- Default focal length computation
- Linear interpolation of scalars and vectors
- Positional spread of a short trajectory (stability / smoothness scoring)
"""

import numpy as np
from typing import Sequence, Union
from numpy.typing import NDArray


def compute_default_focal_length(
    width: int,
    fov_deg: float = 60.0
) -> float:
    """
    Compute focal length for a given horizontal field of view.

    Args:
        width: Image width in pixels
        fov_deg: Horizontal field of view in degrees (default: 60°)

    Returns:
        Focal length in pixels

    Note:
        60° approximates the horizontal FOV of a typical laptop or phone
        front camera.
    """
    return width / (2.0 * np.tan(np.radians(fov_deg / 2.0)))


def lerp(
    start: Union[float, NDArray[np.float64]],
    end: Union[float, NDArray[np.float64]],
    t: float
) -> Union[float, NDArray[np.float64]]:
    """
    Linear interpolation: start + (end - start) * t.

    Works element-wise on numpy arrays.
    """
    return start + (end - start) * t


def position_variance(positions: Sequence[NDArray[np.float64]]) -> float:
    """
    Positional spread of a set of 3D points.

    Returns the root-mean-square distance of the points from their mean
    (square root of the mean squared deviation), in the same units as the
    positions. Fewer than two points have zero spread.

    Args:
        positions: Sequence of points, each shape (3,)

    Returns:
        RMS deviation from the mean position
    """
    if len(positions) < 2:
        return 0.0

    points = np.asarray(positions, dtype=np.float64)
    deviations = points - points.mean(axis=0)
    return float(np.sqrt(np.mean(np.sum(deviations ** 2, axis=1))))
