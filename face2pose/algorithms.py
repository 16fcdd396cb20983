"""
Smoothing algorithms for the positioning engine.

Each algorithm turns one frame's measurement into a candidate
(position, rotation, scale), using the previous pre-offset state and the
engine's shared FilterBank:

- basic:    exponential smoothing with fixed factors
- kalman:   one constant-velocity estimator each for position, rotation
            and scale
- adaptive: exponential smoothing modulated by confidence, adaptive scale
- hybrid:   Kalman position, confidence-weighted rotation smoothing,
            adaptive scale (default)

Smoothing factors are the weight given to the previous state.
"""

import logging
from typing import Dict, NamedTuple, Optional

import numpy as np
from numpy.typing import NDArray

from .config import Calibration, KalmanConfig, PositioningConfig
from .kalman import ConstantVelocityEstimator
from .types import FaceGeometry
from .utils import lerp

logger = logging.getLogger(__name__)


class Measurement(NamedTuple):
    """Raw per-frame input to an algorithm."""
    position: NDArray[np.float64]   # anchor centre mount
    rotation: NDArray[np.float64]   # head pose Euler angles
    scale: float                    # head pose scale
    confidence: float
    dt: float


class Candidate(NamedTuple):
    """Algorithm output before jitter reduction and offsets."""
    position: NDArray[np.float64]
    rotation: NDArray[np.float64]
    scale: NDArray[np.float64]


class AdaptiveScaling:
    """
    Running face measurements blended toward each frame's values.

    The scale vector is (eye distance ratio, face height ratio, their mean)
    against the calibration face, each pulled toward 1.0 by
    (1 - stability_factor).
    """

    def __init__(
        self,
        calibration: Calibration,
        adaptation_rate: float = 0.1,
        stability_factor: float = 0.95
    ):
        self.calibration = calibration
        self.adaptation_rate = adaptation_rate
        self.stability_factor = stability_factor
        self.reset()

    def reset(self) -> None:
        self.eye_distance = self.calibration.average_eye_distance
        self.face_width = self.calibration.average_face_width
        self.face_height = self.calibration.average_face_height

    def update(self, geometry: FaceGeometry) -> None:
        rate = self.adaptation_rate
        self.eye_distance = lerp(self.eye_distance, geometry.eye_distance, rate)
        self.face_width = lerp(self.face_width, geometry.face_width, rate)
        self.face_height = lerp(self.face_height, geometry.face_height, rate)

    def scale_vector(self) -> NDArray[np.float64]:
        horizontal = self.eye_distance / self.calibration.average_eye_distance
        vertical = self.face_height / self.calibration.average_face_height
        depth = (horizontal + vertical) / 2.0
        raw = np.array([horizontal, vertical, depth], dtype=np.float64)
        return lerp(np.ones(3), raw, self.stability_factor)

    def copy(self) -> "AdaptiveScaling":
        clone = AdaptiveScaling(self.calibration, self.adaptation_rate, self.stability_factor)
        clone.eye_distance = self.eye_distance
        clone.face_width = self.face_width
        clone.face_height = self.face_height
        return clone


class FilterBank:
    """Estimators and adaptive scaling shared by the algorithms."""

    def __init__(
        self,
        kalman: KalmanConfig,
        calibration: Calibration,
        positioning: PositioningConfig
    ):
        self.kalman_position = ConstantVelocityEstimator(
            kalman.position.process_noise, kalman.position.measurement_noise
        )
        self.kalman_rotation = ConstantVelocityEstimator(
            kalman.rotation.process_noise, kalman.rotation.measurement_noise
        )
        self.kalman_scale = ConstantVelocityEstimator(
            kalman.scale.process_noise, kalman.scale.measurement_noise,
            initial_position=np.ones(3)
        )
        self.adaptive = AdaptiveScaling(
            calibration,
            adaptation_rate=positioning.scale_adaptation_rate,
            stability_factor=positioning.scale_stability_factor,
        )

    def seed(
        self,
        position: NDArray[np.float64],
        rotation: NDArray[np.float64],
        scale: NDArray[np.float64]
    ) -> None:
        """Restart all estimators at a known state with zero velocity."""
        self.kalman_position.reset(position)
        self.kalman_rotation.reset(rotation)
        self.kalman_scale.reset(scale)

    def copy(self) -> "FilterBank":
        clone = object.__new__(FilterBank)
        clone.kalman_position = self.kalman_position.copy()
        clone.kalman_rotation = self.kalman_rotation.copy()
        clone.kalman_scale = self.kalman_scale.copy()
        clone.adaptive = self.adaptive.copy()
        return clone


def _clamp_scale(scale: NDArray[np.float64], config: PositioningConfig) -> NDArray[np.float64]:
    return np.clip(scale, config.min_scale, config.max_scale)


class PositioningAlgorithm:
    """Base class: one smoothing strategy."""

    name = ""
    description = ""

    def process(
        self,
        measurement: Measurement,
        previous: Optional[Candidate],
        filters: FilterBank,
        config: PositioningConfig
    ) -> Candidate:
        """
        Args:
            measurement: This frame's raw values
            previous: Previous pre-offset output, None on the first frame
            filters: Shared estimators (may be advanced by this call)
            config: Positioning configuration

        Returns:
            Candidate state for this frame
        """
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name='{self.name}')"


class BasicPositioning(PositioningAlgorithm):
    name = "basic"
    description = "Exponential smoothing toward the measurement with fixed factors"

    def process(self, measurement, previous, filters, config):
        position = np.array(measurement.position, dtype=np.float64)
        rotation = np.array(measurement.rotation, dtype=np.float64)
        scale = _clamp_scale(np.full(3, measurement.scale), config)

        if previous is not None:
            position = lerp(position, previous.position, config.position_smoothing_factor)
            rotation = lerp(rotation, previous.rotation, config.rotation_smoothing_factor)
            scale = lerp(scale, previous.scale, config.scale_smoothing_factor)

        return Candidate(position, rotation, scale)


class KalmanPositioning(PositioningAlgorithm):
    name = "kalman"
    description = "Constant-velocity Kalman filters for position, rotation and scale"

    def process(self, measurement, previous, filters, config):
        for kf in (filters.kalman_position, filters.kalman_rotation, filters.kalman_scale):
            kf.predict(measurement.dt)

        filters.kalman_position.update(measurement.position)
        filters.kalman_rotation.update(measurement.rotation)
        filters.kalman_scale.update(np.full(3, measurement.scale))

        # Uniform scale from the first filtered component
        scale = _clamp_scale(np.full(3, filters.kalman_scale.position[0]), config)

        return Candidate(
            filters.kalman_position.position,
            filters.kalman_rotation.position,
            scale,
        )


class AdaptivePositioning(PositioningAlgorithm):
    name = "adaptive"
    description = "Confidence-modulated exponential smoothing with adaptive scaling"

    def process(self, measurement, previous, filters, config):
        confidence = measurement.confidence
        position = np.array(measurement.position, dtype=np.float64)
        rotation = np.array(measurement.rotation, dtype=np.float64)
        scale = filters.adaptive.scale_vector()

        if previous is not None:
            position = lerp(position, previous.position, config.position_smoothing_factor * confidence)
            rotation_factor = config.rotation_smoothing_factor * (confidence * 0.8 + 0.2)
            rotation = lerp(rotation, previous.rotation, rotation_factor)
            scale = lerp(scale, previous.scale, config.scale_smoothing_factor * confidence)

        return Candidate(position, rotation, _clamp_scale(scale, config))


class HybridPositioning(PositioningAlgorithm):
    name = "hybrid"
    description = (
        "Kalman position, confidence-weighted rotation smoothing, "
        "adaptive proportional scaling"
    )

    def process(self, measurement, previous, filters, config):
        filters.kalman_position.predict(measurement.dt)
        filters.kalman_position.update(measurement.position)
        position = filters.kalman_position.position

        rotation = np.array(measurement.rotation, dtype=np.float64)
        scale = filters.adaptive.scale_vector()

        if previous is not None:
            rotation_factor = config.rotation_smoothing_factor * (measurement.confidence * 0.7 + 0.3)
            rotation = lerp(rotation, previous.rotation, rotation_factor)
            scale = lerp(scale, previous.scale, config.scale_smoothing_factor)

        return Candidate(position, rotation, _clamp_scale(scale, config))


ALGORITHMS: Dict[str, PositioningAlgorithm] = {
    algorithm.name: algorithm
    for algorithm in (
        BasicPositioning(),
        KalmanPositioning(),
        AdaptivePositioning(),
        HybridPositioning(),
    )
}


def get_algorithm(name: str) -> PositioningAlgorithm:
    """
    Raises:
        ValueError: If no algorithm has this name
    """
    try:
        return ALGORITHMS[name]
    except KeyError:
        raise ValueError(
            f"Unknown positioning algorithm '{name}'. Available: {sorted(ALGORITHMS)}"
        ) from None
