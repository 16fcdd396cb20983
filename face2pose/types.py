"""
Data types passed between the tracking stages.

Flow per detector callback:
    LandmarkFrame -> FaceGeometry -> HeadPose + AnchorPoints
                  -> PositioningEngine -> PositioningState

All vectors are float64 numpy arrays in world coordinates (see
coordinates.py). Per-frame types are created fresh every frame and are not
mutated after construction.
"""

from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, List, Optional, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from . import coordinates


def _vector3(value, name: str) -> NDArray[np.float64]:
    """Copy value into a read-only float64 vector of shape (3,)."""
    vec = np.array(value, dtype=np.float64).reshape(-1)
    if vec.shape != (3,):
        raise ValueError(f"{name} must have 3 components, got shape {vec.shape}")
    vec.setflags(write=False)
    return vec


class TrackingStatus(Enum):
    """Positioning engine state machine."""
    UNINITIALIZED = "uninitialized"
    TRACKING = "tracking"
    TRACKING_LOST = "tracking_lost"
    RESET = "reset"


class LandmarkFrame:
    """
    One detector result: normalized landmarks plus a confidence scalar.

    landmarks[:, 0:2] are image coordinates in [0, 1] (x right, y down);
    landmarks[:, 2] is the detector's relative depth.
    """

    def __init__(
        self,
        landmarks: Union[Sequence[Sequence[float]], NDArray[np.float64]],
        confidence: float = 1.0,
        timestamp: Optional[float] = None
    ):
        """
        Args:
            landmarks: Points, shape (N, 3)
            confidence: Detector confidence in [0, 1]
            timestamp: Capture time in seconds (None = stamp on arrival)

        Raises:
            ValueError: If landmarks have the wrong shape or non-finite
                values, or confidence is outside [0, 1]
        """
        lm = np.array(landmarks, dtype=np.float64)
        if lm.ndim != 2 or lm.shape[1] != 3:
            raise ValueError(f"Expected landmarks shape (N, 3), got {lm.shape}")
        if not np.all(np.isfinite(lm)):
            raise ValueError("Landmarks contain non-finite values")
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0, 1], got {confidence}")

        lm.setflags(write=False)
        self.landmarks = lm
        self.confidence = float(confidence)
        self.timestamp = timestamp

    def __len__(self) -> int:
        return self.landmarks.shape[0]

    def __repr__(self) -> str:
        return f"LandmarkFrame(n={len(self)}, confidence={self.confidence:.2f})"


@dataclass(frozen=True, eq=False)
class FaceGeometry:
    """Metric face points, measurements and orientation vectors for one frame."""
    left_eye: NDArray[np.float64]
    right_eye: NDArray[np.float64]
    nose_bridge: NDArray[np.float64]
    nose_tip: NDArray[np.float64]
    left_temple: NDArray[np.float64]
    right_temple: NDArray[np.float64]
    face_top: NDArray[np.float64]
    face_bottom: NDArray[np.float64]

    eye_distance: float
    face_width: float
    face_height: float
    nose_length: float
    temple_width: float

    eye_vector: NDArray[np.float64]
    nose_vector: NDArray[np.float64]
    face_normal: NDArray[np.float64]

    # Pinhole distance estimate from the eye distance, meters
    depth: float

    @property
    def eye_midpoint(self) -> NDArray[np.float64]:
        return (self.left_eye + self.right_eye) / 2.0


class HeadPose:
    """
    Rigid head pose with a scale factor relative to the calibration face.

    rotation (XYZ Euler, radians) and quaternion (w, x, y, z) always
    describe the same rotation: both are set together at construction and
    the object is immutable.
    """

    __slots__ = ("position", "rotation", "quaternion", "scale")

    def __init__(
        self,
        position: NDArray[np.float64],
        rotation: NDArray[np.float64],
        scale: float = 1.0
    ):
        if not scale > 0:
            raise ValueError(f"Head pose scale must be positive, got {scale}")
        quaternion = coordinates.euler_to_quaternion(rotation)
        quaternion.setflags(write=False)
        object.__setattr__(self, "position", _vector3(position, "position"))
        object.__setattr__(self, "rotation", _vector3(rotation, "rotation"))
        object.__setattr__(self, "quaternion", quaternion)
        object.__setattr__(self, "scale", float(scale))

    def __setattr__(self, name, value):
        raise AttributeError("HeadPose is immutable; use with_rotation() or from_quaternion()")

    @classmethod
    def from_quaternion(
        cls,
        position: NDArray[np.float64],
        quaternion: NDArray[np.float64],
        scale: float = 1.0
    ) -> "HeadPose":
        return cls(position, coordinates.quaternion_to_euler(quaternion), scale)

    def with_rotation(self, rotation: NDArray[np.float64]) -> "HeadPose":
        return HeadPose(self.position, rotation, self.scale)

    def __repr__(self) -> str:
        return (
            f"HeadPose(position={np.round(self.position, 4).tolist()}, "
            f"rotation={np.round(self.rotation, 4).tolist()}, scale={self.scale:.3f})"
        )


@dataclass(frozen=True, eq=False)
class AnchorPoints:
    """Mounting geometry for the virtual object, derived from one FaceGeometry."""
    center_mount: NDArray[np.float64]
    left_mount: NDArray[np.float64]
    right_mount: NDArray[np.float64]
    left_arm_start: NDArray[np.float64]
    right_arm_start: NDArray[np.float64]

    mount_width: float
    mount_height: float
    bridge_width: float
    arm_length: float


@dataclass(frozen=True)
class TrackingQuality:
    """Per-frame tracking quality snapshot, all values in [0, 1]."""
    confidence: float
    stability: float
    accuracy: float
    tracking_loss_risk: float


@dataclass(frozen=True)
class PositioningQuality:
    """Composite quality score of the positioning engine output."""
    stability: float = 0.0
    accuracy: float = 0.0
    smoothness: float = 0.0
    responsiveness: float = 0.0
    overall_score: float = 0.0


@dataclass(frozen=True, eq=False)
class PositioningState:
    """
    Published object transform for one frame.

    scale is per-axis (x, y, z); all components are positive.
    """
    position: NDArray[np.float64]
    rotation: NDArray[np.float64]
    scale: NDArray[np.float64]
    confidence: float
    is_stable: bool
    timestamp: float

    def __post_init__(self):
        object.__setattr__(self, "position", _vector3(self.position, "position"))
        object.__setattr__(self, "rotation", _vector3(self.rotation, "rotation"))
        object.__setattr__(self, "scale", _vector3(self.scale, "scale"))

    def to_matrix(self) -> NDArray[np.float64]:
        """4x4 object-to-world matrix for the renderer."""
        return coordinates.compose_transform(self.position, self.rotation, self.scale)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "position": self.position.tolist(),
            "rotation": self.rotation.tolist(),
            "scale": self.scale.tolist(),
            "confidence": self.confidence,
            "is_stable": self.is_stable,
        }


@dataclass
class TrackingHistory:
    """Bounded history of published states, oldest first."""
    max_size: int = 30
    positions: Deque[NDArray[np.float64]] = field(default_factory=deque)
    rotations: Deque[NDArray[np.float64]] = field(default_factory=deque)
    scales: Deque[float] = field(default_factory=deque)
    confidences: Deque[float] = field(default_factory=deque)
    timestamps: Deque[float] = field(default_factory=deque)

    def __post_init__(self):
        for name in ("positions", "rotations", "scales", "confidences", "timestamps"):
            setattr(self, name, deque(getattr(self, name), maxlen=self.max_size))

    def append(self, state: PositioningState) -> None:
        self.positions.append(state.position)
        self.rotations.append(state.rotation)
        self.scales.append(float(state.scale[0]))
        self.confidences.append(state.confidence)
        self.timestamps.append(state.timestamp)

    def recent_positions(self, n: int) -> List[NDArray[np.float64]]:
        return list(self.positions)[-n:]

    def clear(self) -> None:
        for name in ("positions", "rotations", "scales", "confidences", "timestamps"):
            getattr(self, name).clear()

    def copy(self) -> "TrackingHistory":
        return TrackingHistory(
            max_size=self.max_size,
            positions=self.positions,
            rotations=self.rotations,
            scales=self.scales,
            confidences=self.confidences,
            timestamps=self.timestamps,
        )

    def __len__(self) -> int:
        return len(self.positions)
