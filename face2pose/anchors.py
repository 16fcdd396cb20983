"""
Anchor points for mounting a virtual object on the tracked face.

All positions and sizes scale with the measured eye distance and temple
width, so the object fits faces of different size without per-user
calibration.
"""

import numpy as np
from typing import Optional

from .config import AnchorConfig
from .coordinates import WorldCoordinates
from .types import AnchorPoints, FaceGeometry


class AnchorPointCalculator:
    """
    Derive mounting geometry from one frame's face geometry.

    - center_mount: eye-line midpoint, mount_up_offset meters up (world +Y)
    - left/right_mount: center_mount -/+ mount_offset_ratio * eye_distance
      along the eye vector
    - left/right_arm_start: center_mount -/+ arm_offset_ratio * eye_distance
      along the eye vector
    - mount_width = mount_width_ratio * eye_distance,
      mount_height = mount_aspect * mount_width,
      bridge_width = bridge_width_ratio * eye_distance,
      arm_length = arm_length_ratio * temple_width
    """

    def __init__(self, config: Optional[AnchorConfig] = None):
        self.config = config if config is not None else AnchorConfig()

    def anchors(self, geometry: FaceGeometry) -> AnchorPoints:
        cfg = self.config
        eye_distance = geometry.eye_distance
        across = geometry.eye_vector

        center_mount = geometry.eye_midpoint + WorldCoordinates.UP_AXIS * cfg.mount_up_offset

        mount_offset = across * (eye_distance * cfg.mount_offset_ratio)
        arm_offset = across * (eye_distance * cfg.arm_offset_ratio)

        mount_width = eye_distance * cfg.mount_width_ratio

        return AnchorPoints(
            center_mount=center_mount,
            left_mount=center_mount - mount_offset,
            right_mount=center_mount + mount_offset,
            left_arm_start=center_mount - arm_offset,
            right_arm_start=center_mount + arm_offset,
            mount_width=float(mount_width),
            mount_height=float(mount_width * cfg.mount_aspect),
            bridge_width=float(eye_distance * cfg.bridge_width_ratio),
            arm_length=float(geometry.temple_width * cfg.arm_length_ratio),
        )
