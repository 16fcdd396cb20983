"""
face2pose - Head pose tracking and object positioning for virtual try-on.

This package converts face landmark detector output into:
- Metric face geometry and head pose (position, rotation, scale)
- Anchor points for mounting a virtual object on the face
- A smoothed, outlier-resistant object transform per frame

Example usage:
    from face2pose import FaceTracker, LandmarkIngest

    frames, image_size = LandmarkIngest.from_json("session.json")
    tracker = FaceTracker()
    for frame in frames:
        result = tracker.process(frame)
        if result.state is not None:
            print(result.state.to_matrix())
"""

__version__ = "0.1.0"

from .anchors import AnchorPointCalculator
from .camera import Camera
from .config import AnchorConfig, Calibration, Config, KalmanConfig, PositioningConfig
from .errors import ConfigurationInvalid, Face2PoseError, InsufficientLandmarks
from .face import FaceGeometryExtractor, LandmarkIngest, LandmarkIndices, MEDIAPIPE_INDICES
from .kalman import ConstantVelocityEstimator
from .pipeline import FaceTracker, TrackingResult
from .pose import HeadPoseEstimator, assess_tracking_quality
from .positioning import PositioningEngine
from .types import (
    AnchorPoints,
    FaceGeometry,
    HeadPose,
    LandmarkFrame,
    PositioningQuality,
    PositioningState,
    TrackingHistory,
    TrackingQuality,
    TrackingStatus,
)

__all__ = [
    "AnchorConfig",
    "AnchorPointCalculator",
    "AnchorPoints",
    "Calibration",
    "Camera",
    "Config",
    "ConfigurationInvalid",
    "ConstantVelocityEstimator",
    "Face2PoseError",
    "FaceGeometry",
    "FaceGeometryExtractor",
    "FaceTracker",
    "HeadPose",
    "HeadPoseEstimator",
    "InsufficientLandmarks",
    "KalmanConfig",
    "LandmarkFrame",
    "LandmarkIndices",
    "LandmarkIngest",
    "MEDIAPIPE_INDICES",
    "PositioningConfig",
    "PositioningEngine",
    "PositioningQuality",
    "PositioningState",
    "TrackingHistory",
    "TrackingQuality",
    "TrackingResult",
    "TrackingStatus",
    "assess_tracking_quality",
]
