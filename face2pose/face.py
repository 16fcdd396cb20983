"""
Face landmark ingestion and metric face geometry extraction.

This module provides:
- The landmark index table for MediaPipe's refined face mesh (478 points)
- FaceGeometryExtractor: normalized landmarks -> metric 3D FaceGeometry
- compute_face_normal: face orientation from eye and nose vectors
- LandmarkIngest: load recorded detector output (JSON) as LandmarkFrames

MediaPipe landmark conventions:
    x: normalized to image width, 0 = left edge
    y: normalized to image height, 0 = top edge
    z: relative depth, roughly the same scale as x, negative toward camera

"Left" and "right" refer to image sides: LEFT_EYE is the eye that appears
on the left of the (unmirrored) image.

No MediaPipe dependency is required; only the index convention is used.
"""

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from . import coordinates
from .camera import Camera
from .config import Calibration
from .errors import InsufficientLandmarks
from .types import FaceGeometry, LandmarkFrame

logger = logging.getLogger(__name__)


# =============================================================================
# Landmark Indices
# =============================================================================
# Indices into MediaPipe Face Mesh with refine_landmarks=True (478 points).
# Eye centres are the iris centre landmarks, which only exist in the refined
# model, so at least 474 points are required with the default table.

@dataclass(frozen=True)
class LandmarkIndices:
    """Detector indices of the landmarks the extractor needs."""
    left_eye: int = 468
    right_eye: int = 473
    nose_tip: int = 1
    nose_bridge: int = 6
    left_temple: int = 234
    right_temple: int = 454
    face_top: int = 10
    face_bottom: int = 152

    @property
    def required_count(self) -> int:
        """Minimum number of landmarks a frame must contain."""
        return max(getattr(self, f.name) for f in fields(self)) + 1


MEDIAPIPE_INDICES = LandmarkIndices()


# =============================================================================
# Face Orientation
# =============================================================================

def _unit(vector: NDArray[np.float64], fallback: NDArray[np.float64]) -> NDArray[np.float64]:
    norm = np.linalg.norm(vector)
    if norm < 1e-10:
        return np.array(fallback, dtype=np.float64)
    return vector / norm


def compute_face_normal(
    eye_vector: NDArray[np.float64],
    nose_vector: NDArray[np.float64]
) -> NDArray[np.float64]:
    """
    Compute face normal direction from eye and nose vectors.

    Uses cross product of eye_vector x nose_vector. The eye vector runs left
    to right across the face, the nose vector from bridge to tip, so for a
    face looking at the camera the normal points away from the camera (-Z).

    Args:
        eye_vector: Unit vector from left eye to right eye, shape (3,)
        nose_vector: Unit vector from nose bridge to nose tip, shape (3,)

    Returns:
        Unit normal vector, shape (3,)
    """
    normal = np.cross(eye_vector, nose_vector)
    norm = np.linalg.norm(normal)

    if norm < 1e-10:
        # Degenerate case (eye and nose vectors parallel), looking at camera
        return coordinates.WorldCoordinates.FORWARD_AXIS.copy()

    return normal / norm


# =============================================================================
# Geometry Extraction
# =============================================================================

class FaceGeometryExtractor:
    """
    Convert normalized landmark frames to metric face geometry.

    Each landmark is mapped from image coordinates to NDC (Y flipped) and
    unprojected through the calibration camera at an estimated depth:

    - depth_mode "relative_z": base_depth + z * depth_range per landmark
    - depth_mode "eye_distance": the pinhole depth from the measured eye
      distance, plus each landmark's relative z offset from the eyes

    The pinhole depth (focal_length * real_eye_distance / pixel_eye_distance,
    scaled, offset and clamped to [min_depth, max_depth]) is always stored
    on the geometry for head pose estimation.

    Pure: the result depends only on the frame, calibration and camera.
    """

    def __init__(
        self,
        calibration: Optional[Calibration] = None,
        camera: Optional[Camera] = None,
        indices: LandmarkIndices = MEDIAPIPE_INDICES
    ):
        """
        Args:
            calibration: Calibration priors (default: Calibration())
            camera: Camera to unproject through
                   (default: calibration.build_camera())
            indices: Landmark index table
        """
        self.calibration = calibration if calibration is not None else Calibration()
        self.camera = camera if camera is not None else self.calibration.build_camera()
        self.indices = indices

    def extract(self, frame: LandmarkFrame) -> FaceGeometry:
        """
        Extract metric face geometry from one landmark frame.

        Args:
            frame: Detector output

        Returns:
            FaceGeometry for this frame

        Raises:
            InsufficientLandmarks: If the frame lacks a required index
        """
        required = self.indices.required_count
        if len(frame) < required:
            raise InsufficientLandmarks(required, len(frame))

        lm = frame.landmarks
        idx = self.indices

        depth = self.estimate_depth(lm[idx.left_eye], lm[idx.right_eye])
        eye_z = (lm[idx.left_eye, 2] + lm[idx.right_eye, 2]) / 2.0

        def to_3d(index: int) -> NDArray[np.float64]:
            x, y, z = lm[index]
            if self.calibration.depth_mode == "eye_distance":
                point_depth = depth + (z - eye_z) * self.calibration.depth_range
            else:
                point_depth = self.depth_from_relative_z(z)
            ndc_x, ndc_y = coordinates.normalized_to_ndc(x, y)
            return self.camera.unproject(ndc_x, ndc_y, point_depth)

        left_eye = to_3d(idx.left_eye)
        right_eye = to_3d(idx.right_eye)
        nose_bridge = to_3d(idx.nose_bridge)
        nose_tip = to_3d(idx.nose_tip)
        left_temple = to_3d(idx.left_temple)
        right_temple = to_3d(idx.right_temple)
        face_top = to_3d(idx.face_top)
        face_bottom = to_3d(idx.face_bottom)

        eye_vector = _unit(right_eye - left_eye, coordinates.WorldCoordinates.RIGHT_AXIS)
        nose_vector = _unit(nose_tip - nose_bridge, -coordinates.WorldCoordinates.UP_AXIS)
        face_normal = compute_face_normal(eye_vector, nose_vector)

        # Temple width: mean eye-to-temple distance of the two sides
        temple_width = (
            np.linalg.norm(left_temple - left_eye) + np.linalg.norm(right_temple - right_eye)
        ) / 2.0

        geometry = FaceGeometry(
            left_eye=left_eye,
            right_eye=right_eye,
            nose_bridge=nose_bridge,
            nose_tip=nose_tip,
            left_temple=left_temple,
            right_temple=right_temple,
            face_top=face_top,
            face_bottom=face_bottom,
            eye_distance=float(np.linalg.norm(right_eye - left_eye)),
            face_width=float(np.linalg.norm(right_temple - left_temple)),
            face_height=float(np.linalg.norm(face_top - face_bottom)),
            nose_length=float(np.linalg.norm(nose_tip - nose_bridge)),
            temple_width=float(temple_width),
            eye_vector=eye_vector,
            nose_vector=nose_vector,
            face_normal=face_normal,
            depth=depth,
        )

        logger.debug(
            "Face geometry: eye_distance=%.4f, face_width=%.4f, face_height=%.4f, depth=%.3f",
            geometry.eye_distance, geometry.face_width, geometry.face_height, depth
        )

        return geometry

    def depth_from_relative_z(self, z: float) -> float:
        """Absolute depth from the detector's relative z."""
        return self.calibration.base_depth + z * self.calibration.depth_range

    def estimate_depth(
        self,
        left_eye: NDArray[np.float64],
        right_eye: NDArray[np.float64]
    ) -> float:
        """
        Pinhole depth estimate from the eye distance in the image.

        depth = focal_length * average_eye_distance / pixel_eye_distance,
        then depth_scale / depth_offset are applied and the result is
        clamped to [min_depth, max_depth].

        Args:
            left_eye, right_eye: Normalized landmarks (x, y, z)

        Returns:
            Estimated camera-to-face distance in meters
        """
        cal = self.calibration
        pixel_eye_distance = self.camera.pixel_distance(left_eye[:2], right_eye[:2])

        if pixel_eye_distance < 1e-6:
            # Eyes coincide in the image: face edge-on or detector glitch
            logger.warning(
                "Eye landmarks coincide in the image, clamping depth to %.2f",
                cal.max_depth
            )
            return float(cal.max_depth)

        depth = self.camera.fx * cal.average_eye_distance / pixel_eye_distance
        depth = depth * cal.depth_scale + cal.depth_offset
        return float(np.clip(depth, cal.min_depth, cal.max_depth))


# =============================================================================
# Landmark Ingestion
# =============================================================================

class LandmarkIngest:
    """
    Load recorded face landmark detector output.

    Supported input formats:
    - "mediapipe": MediaPipe Face Mesh (normalized, 468 or 478 landmarks)

    Recording JSON:
        {"source": "mediapipe",
         "image_size": [w, h],                      (optional)
         "frames": [{"timestamp": t, "confidence": c,
                     "landmarks": [[x, y, z], ...]}, ...]}

    A single-frame file may carry "landmarks" (and optionally "confidence")
    at the top level instead of "frames".

    Usage:
        frames, image_size = LandmarkIngest.from_json("session.json")
    """

    @staticmethod
    def from_mediapipe(
        landmarks: Union[List[List[float]], NDArray[np.float64]],
        confidence: float = 1.0,
        timestamp: Optional[float] = None
    ) -> LandmarkFrame:
        """
        Wrap raw MediaPipe landmarks in a LandmarkFrame.

        Args:
            landmarks: Normalized landmarks, shape (N, 3)
            confidence: Detection confidence in [0, 1]
            timestamp: Capture time in seconds

        Raises:
            ValueError: If landmarks have wrong shape or values
        """
        return LandmarkFrame(landmarks, confidence=confidence, timestamp=timestamp)

    @staticmethod
    def from_dict(
        data: dict,
        source_name: str = "<dict>"
    ) -> Tuple[List[LandmarkFrame], Optional[Tuple[int, int]]]:
        """
        Parse a recording already loaded from JSON.

        Returns:
            (frames, image_size) where image_size is None if not recorded

        Raises:
            ValueError: If format is unrecognized or data is invalid
        """
        source = str(data.get("source", "")).lower()
        if source != "mediapipe":
            raise ValueError(
                f"Unsupported face landmark source: '{source}' in {source_name}. "
                f"Supported: 'mediapipe'"
            )

        image_size = data.get("image_size")
        if image_size is not None:
            image_size = tuple(int(v) for v in image_size)

        if "frames" in data:
            raw_frames = data["frames"]
        elif "landmarks" in data:
            raw_frames = [data]
        else:
            raise ValueError(
                f"MediaPipe JSON missing 'frames' or 'landmarks' field in {source_name}"
            )

        frames = []
        for i, raw in enumerate(raw_frames):
            if "landmarks" not in raw:
                raise ValueError(f"Frame {i} missing 'landmarks' field in {source_name}")
            frames.append(LandmarkIngest.from_mediapipe(
                raw["landmarks"],
                confidence=float(raw.get("confidence", 1.0)),
                timestamp=raw.get("timestamp"),
            ))

        logger.debug(
            "Loaded %d MediaPipe frame(s) from %s, image_size=%s",
            len(frames), source_name, image_size
        )
        return frames, image_size

    @staticmethod
    def from_json(
        filepath: Union[str, Path]
    ) -> Tuple[List[LandmarkFrame], Optional[Tuple[int, int]]]:
        """
        Load a landmark recording from a JSON file.

        Auto-detects the source format from the JSON "source" field.

        Args:
            filepath: Path to JSON file.

        Returns:
            (frames, image_size)

        Raises:
            ValueError: If format is unrecognized or data is invalid.
            FileNotFoundError: If file does not exist.
        """
        filepath = Path(filepath)
        with open(filepath, 'r') as f:
            data = json.load(f)

        return LandmarkIngest.from_dict(data, source_name=str(filepath))
