"""
Pinhole camera used to lift landmarks into metric space.

The Camera approximates the capture device by focal length and image size,
plus a pose in world space. It unprojects normalized landmark coordinates
to metric 3D points and projects points back for synthetic input.
"""

import numpy as np
from typing import Tuple, Optional
from numpy.typing import NDArray

from . import coordinates


class Camera:
    """
    Pinhole model of the capture device.

    fx and fy are in pixels, with the principal point at the image centre.
    position and rotation (camera-to-world) place the camera in the world;
    the tracker keeps it at the origin, looking down -Z (see coordinates.py).
    """

    def __init__(
        self,
        focal_length: Tuple[float, float],
        image_size: Tuple[int, int],
        position: Optional[NDArray[np.float64]] = None,
        rotation: Optional[NDArray[np.float64]] = None
    ):
        """
        Args:
            focal_length: (fx, fy) in pixels
            image_size: (width, height) in pixels
            position: Camera centre in world coords (default: origin)
            rotation: Camera-to-world rotation, 3x3 (default: identity)

        Raises:
            ValueError: If focal length or image size is not positive
        """
        self.fx, self.fy = (float(f) for f in focal_length)
        self.width, self.height = image_size

        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(f"Focal length must be positive, got {focal_length}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Image size must be positive, got {image_size}")

        if position is None:
            self.position = np.zeros(3, dtype=np.float64)
        else:
            self.position = np.array(position, dtype=np.float64)

        if rotation is None:
            self.rotation = np.eye(3, dtype=np.float64)
        else:
            self.rotation = np.array(rotation, dtype=np.float64)

    def ray_direction(self, ndc_x: float, ndc_y: float) -> NDArray[np.float64]:
        """
        Unit direction of the viewing ray through an NDC point, in world coords.

        NDC (-1, -1) is the bottom-left image corner, (1, 1) the top-right.
        """
        local = np.array([
            ndc_x * (self.width / 2.0) / self.fx,
            ndc_y * (self.height / 2.0) / self.fy,
            -1.0,
        ], dtype=np.float64)
        local /= np.linalg.norm(local)
        return self.rotation @ local

    def unproject(self, ndc_x: float, ndc_y: float, depth: float) -> NDArray[np.float64]:
        """
        Unproject an NDC point to the world point at a given distance.

        Args:
            ndc_x, ndc_y: Point in normalized device coordinates
            depth: Distance from the camera centre along the viewing ray

        Returns:
            World point, shape (3,)
        """
        return self.position + self.ray_direction(ndc_x, ndc_y) * depth

    def project(self, point: NDArray[np.float64]) -> Tuple[float, float, float]:
        """
        Project a world point into normalized image coordinates.

        Inverse of unproject() combined with coordinates.normalized_to_ndc().

        Args:
            point: World point, shape (3,), in front of the camera

        Returns:
            (x, y, distance): normalized image coordinates in [0, 1] for points
            inside the frame, and distance from the camera centre

        Raises:
            ValueError: If the point is not in front of the camera
        """
        offset = np.asarray(point, dtype=np.float64) - self.position
        local = self.rotation.T @ offset
        if local[2] >= 0:
            raise ValueError(f"Point {point} is not in front of the camera")

        ndc_x = (local[0] / -local[2]) * self.fx / (self.width / 2.0)
        ndc_y = (local[1] / -local[2]) * self.fy / (self.height / 2.0)
        x, y = coordinates.ndc_to_normalized(ndc_x, ndc_y)
        return x, y, float(np.linalg.norm(offset))

    def pixel_distance(
        self,
        a: Tuple[float, float],
        b: Tuple[float, float]
    ) -> float:
        """
        Distance in pixels between two points given in normalized image coords.
        """
        dx = (a[0] - b[0]) * self.width
        dy = (a[1] - b[1]) * self.height
        return float(np.hypot(dx, dy))

    def __repr__(self) -> str:
        return (
            f"Camera(fx={self.fx:.1f}, fy={self.fy:.1f}, "
            f"size={self.width}x{self.height}, "
            f"pos=[{self.position[0]:.2f}, {self.position[1]:.2f}, {self.position[2]:.2f}])"
        )
