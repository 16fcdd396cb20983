"""
High-level pipeline orchestrating all components.

This module provides the FaceTracker class which ties together:
- Face geometry extraction from landmark frames
- Head pose estimation and per-frame tracking quality
- Anchor point calculation
- The positioning engine

This is the main API for users of the library.
"""

from collections import deque
from dataclasses import dataclass, replace
from typing import Deque, Optional

from .anchors import AnchorPointCalculator
from .config import Config
from .errors import ConfigurationInvalid
from .face import FaceGeometryExtractor
from .pose import HeadPoseEstimator, assess_tracking_quality
from .positioning import PositioningEngine
from .types import (
    AnchorPoints,
    FaceGeometry,
    HeadPose,
    LandmarkFrame,
    PositioningState,
    TrackingQuality,
)

POSE_HISTORY_SIZE = 10


@dataclass(frozen=True, eq=False)
class TrackingResult:
    """Everything computed for one landmark frame."""
    geometry: FaceGeometry
    pose: HeadPose
    anchors: AnchorPoints
    quality: TrackingQuality
    # None until the engine has seen a usable frame
    state: Optional[PositioningState]


class FaceTracker:
    """
    High-level pipeline from landmark frames to object transforms.

    Per frame:
    1. Extract metric face geometry
    2. Estimate head pose, anchor points and tracking quality
    3. Feed the positioning engine

    Example:
        tracker = FaceTracker(Config.from_yaml("face2pose.yaml"))
        for frame in frames:
            result = tracker.process(frame)
            if result.state is not None:
                renderer.apply(result.state.to_matrix())
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize pipeline.

        Args:
            config: Complete configuration (default: Config())
        """
        self.config = config if config is not None else Config()

        self.extractor = FaceGeometryExtractor(self.config.calibration)
        self.estimator = HeadPoseEstimator(self.config.calibration)
        self.anchor_calculator = AnchorPointCalculator(self.config.anchors)
        self.engine = PositioningEngine(
            self.config.positioning,
            calibration=self.config.calibration,
            kalman=self.config.kalman,
        )

        self.pose_history: Deque[HeadPose] = deque(maxlen=POSE_HISTORY_SIZE)

    @classmethod
    def from_config_file(cls, filepath: str) -> "FaceTracker":
        """
        Create tracker from a YAML config file.

        Args:
            filepath: Path to YAML config file

        Returns:
            FaceTracker instance
        """
        return cls(Config.from_yaml(filepath))

    @property
    def last_pose(self) -> Optional[HeadPose]:
        return self.pose_history[-1] if self.pose_history else None

    def process(
        self,
        frame: LandmarkFrame,
        timestamp: Optional[float] = None
    ) -> TrackingResult:
        """
        Run one landmark frame through the pipeline.

        Args:
            frame: Detector output
            timestamp: Frame time in seconds (default: frame.timestamp, or
                      time of arrival if the frame has none)

        Returns:
            TrackingResult for this frame

        Raises:
            InsufficientLandmarks: If the frame lacks required landmarks.
                Nothing is updated in that case.
        """
        if timestamp is None:
            timestamp = frame.timestamp

        geometry = self.extractor.extract(frame)
        pose = self.estimator.estimate(geometry)
        anchors = self.anchor_calculator.anchors(geometry)
        quality = assess_tracking_quality(
            pose, geometry, frame.confidence, self.config.calibration, self.last_pose
        )

        state = self.engine.update_position(
            pose, geometry, anchors, frame.confidence, timestamp
        )
        self.pose_history.append(pose)

        return TrackingResult(
            geometry=geometry,
            pose=pose,
            anchors=anchors,
            quality=quality,
            state=state,
        )

    def update_calibration(self, **changes) -> None:
        """
        Change calibration (e.g. after the capture resolution changes).

        Takes effect from the next frame; tracking state is kept.

        Raises:
            ConfigurationInvalid: If a value is unknown or out of range
        """
        try:
            calibration = replace(self.config.calibration, **changes)
        except TypeError as e:
            raise ConfigurationInvalid(f"Unknown calibration option: {e}") from e
        self.config = replace(self.config, calibration=calibration)

        self.extractor = FaceGeometryExtractor(calibration, indices=self.extractor.indices)
        self.estimator = HeadPoseEstimator(calibration)
        self.engine.update_calibration(calibration)

    def reset(self) -> None:
        """Start a new tracking session with the same configuration."""
        self.engine.reset()
        self.pose_history.clear()

    def __repr__(self) -> str:
        return (
            f"FaceTracker(algorithm='{self.engine.algorithm}', "
            f"status={self.engine.status.value}, image_size={self.config.calibration.image_size})"
        )
