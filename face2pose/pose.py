"""
Head pose estimation from metric face geometry.

This module provides:
- HeadPoseEstimator: FaceGeometry -> HeadPose (position, rotation, scale)
- assess_tracking_quality: per-frame TrackingQuality from pose deltas and
  plausibility of the measured proportions
- face_transform_matrices: face-to-world / world-to-face 4x4 matrices
"""

import logging
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

from . import coordinates
from .config import Calibration
from .types import FaceGeometry, HeadPose, TrackingQuality

logger = logging.getLogger(__name__)

# Smallest scale reported for degenerate geometry (coincident landmarks)
MIN_POSE_SCALE = 1e-6


class HeadPoseEstimator:
    """
    Estimate head pose from face geometry.

    Position: centroid of (left eye, right eye, nose bridge) with Z replaced
    by the pinhole depth estimate (camera at the origin, looking down -Z).

    Rotation (XYZ Euler = pitch, yaw, roll):
    - roll: angle of the eye vector in the image plane
    - pitch: inclination of the nose vector, minus the calibrated neutral
      inclination
    - yaw: face normal projected onto the XZ plane, measured from the
      camera's viewing direction (0 when facing the camera)

    Scale: mean of eye distance and face width ratios to the calibration face.
    """

    def __init__(self, calibration: Optional[Calibration] = None):
        self.calibration = calibration if calibration is not None else Calibration()

    def estimate(self, geometry: FaceGeometry) -> HeadPose:
        """
        Args:
            geometry: Face geometry of the current frame

        Returns:
            HeadPose with rotation and quaternion in sync
        """
        position = (geometry.left_eye + geometry.right_eye + geometry.nose_bridge) / 3.0
        position[2] = -geometry.depth

        rotation = self.estimate_rotation(geometry)
        scale = self.estimate_scale(geometry)

        return HeadPose(position=position, rotation=rotation, scale=scale)

    def estimate_rotation(self, geometry: FaceGeometry) -> NDArray[np.float64]:
        """XYZ Euler angles (pitch, yaw, roll) in radians."""
        eye = geometry.eye_vector
        nose = geometry.nose_vector
        normal = geometry.face_normal

        roll = np.arctan2(eye[1], eye[0])
        pitch = np.arctan2(-nose[1], np.hypot(nose[0], nose[2])) - self.calibration.neutral_nose_pitch
        # Normal points away from the camera when facing it: compare with -Z
        yaw = np.arctan2(-normal[0], -normal[2])

        return np.array([pitch, yaw, roll], dtype=np.float64)

    def estimate_scale(self, geometry: FaceGeometry) -> float:
        """Average of the two independent size cues."""
        cal = self.calibration
        eye_ratio = geometry.eye_distance / cal.average_eye_distance
        width_ratio = geometry.face_width / cal.average_face_width
        scale = (eye_ratio + width_ratio) / 2.0

        if scale < MIN_POSE_SCALE:
            logger.warning("Degenerate face geometry, scale %.3g clamped", scale)
            return MIN_POSE_SCALE
        return float(scale)


def assess_tracking_quality(
    pose: HeadPose,
    geometry: FaceGeometry,
    confidence: float,
    calibration: Calibration,
    previous_pose: Optional[HeadPose] = None
) -> TrackingQuality:
    """
    Score how trustworthy one frame's pose is.

    - stability: 1 - (position delta * 10 + summed rotation delta * 2)
      against the previous pose, floored at 0 (1.0 without a previous pose)
    - accuracy: halved for each measured proportion (eye distance, face
      width) outside [0.5, 2.0] times its calibration value
    - tracking_loss_risk: 1 - min(confidence, stability) once confidence
      falls below 0.7 or stability below 0.5, else 0

    Args:
        pose: Pose of the current frame
        geometry: Geometry of the current frame
        confidence: Detector confidence
        calibration: Calibration priors
        previous_pose: Pose of the previous frame, if any

    Returns:
        TrackingQuality snapshot
    """
    stability = 1.0
    if previous_pose is not None:
        position_diff = float(np.linalg.norm(pose.position - previous_pose.position))
        rotation_diff = float(np.sum(np.abs(pose.rotation - previous_pose.rotation)))
        stability = max(0.0, 1.0 - (position_diff * 10.0 + rotation_diff * 2.0))

    accuracy = 1.0
    for measured, prior in (
        (geometry.eye_distance, calibration.average_eye_distance),
        (geometry.face_width, calibration.average_face_width),
    ):
        ratio = measured / prior
        if ratio < 0.5 or ratio > 2.0:
            accuracy *= 0.5

    tracking_loss_risk = 0.0
    if confidence < 0.7 or stability < 0.5:
        tracking_loss_risk = 1.0 - min(confidence, stability)

    return TrackingQuality(
        confidence=float(confidence),
        stability=stability,
        accuracy=accuracy,
        tracking_loss_risk=tracking_loss_risk,
    )


def face_transform_matrices(pose: HeadPose) -> Tuple[NDArray[np.float64], NDArray[np.float64]]:
    """
    Face-to-world and world-to-face transforms for a head pose.

    Returns:
        (face_to_world, world_to_face), each 4x4
    """
    face_to_world = coordinates.compose_transform(pose.position, pose.rotation, pose.scale)
    return face_to_world, np.linalg.inv(face_to_world)
