"""
Configuration management for face2pose.

Handles:
- Calibration priors and camera intrinsics approximation
- Anchor, Kalman and positioning engine parameters
- Configuration validation
- YAML config file loading and saving
- Command-line argument parsing
"""

from dataclasses import dataclass, field, fields, asdict, replace
from typing import Optional, Tuple, Dict, Any
import argparse

from .camera import Camera
from .errors import ConfigurationInvalid
from .utils import compute_default_focal_length


ALGORITHMS = ("basic", "kalman", "adaptive", "hybrid")
DEPTH_MODES = ("relative_z", "eye_distance")


def _check_unit_interval(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationInvalid(f"{name} must be in [0, 1], got {value}")


def _check_positive(name: str, value: float) -> None:
    if not value > 0:
        raise ConfigurationInvalid(f"{name} must be positive, got {value}")


def _check_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise ConfigurationInvalid(f"{name} must be non-negative, got {value}")


def _check_vector3(name: str, value: Tuple[float, float, float]) -> None:
    if len(value) != 3:
        raise ConfigurationInvalid(f"{name} must have 3 components, got {value}")


@dataclass
class Calibration:
    """
    Anthropometric priors and camera approximation.

    Lengths are in meters. The camera is a pinhole at the world origin
    looking down -Z; its focal length comes from focal_length if set,
    otherwise from fov_deg and the image width.
    """
    average_eye_distance: float = 0.063
    average_face_width: float = 0.14
    average_face_height: float = 0.18

    image_size: Tuple[int, int] = (1280, 720)
    fov_deg: float = 60.0
    focal_length: Optional[float] = None  # None = derived from fov_deg

    # Depth estimation
    depth_mode: str = "relative_z"  # "relative_z" or "eye_distance"
    base_depth: float = 1.0
    depth_range: float = 0.5
    depth_scale: float = 1.0
    depth_offset: float = 0.0
    min_depth: float = 0.3
    max_depth: float = 3.0

    # Nose-line inclination of a level head, subtracted from measured pitch
    neutral_nose_pitch: float = 0.0

    def __post_init__(self):
        self.image_size = tuple(self.image_size)
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigurationInvalid: If any value is out of range
        """
        _check_positive("average_eye_distance", self.average_eye_distance)
        _check_positive("average_face_width", self.average_face_width)
        _check_positive("average_face_height", self.average_face_height)
        if len(self.image_size) != 2 or min(self.image_size) <= 0:
            raise ConfigurationInvalid(f"image_size must be (width, height) > 0, got {self.image_size}")
        if not 0.0 < self.fov_deg < 180.0:
            raise ConfigurationInvalid(f"fov_deg must be in (0, 180), got {self.fov_deg}")
        if self.focal_length is not None:
            _check_positive("focal_length", self.focal_length)
        if self.depth_mode not in DEPTH_MODES:
            raise ConfigurationInvalid(
                f"depth_mode must be one of {DEPTH_MODES}, got '{self.depth_mode}'"
            )
        _check_positive("base_depth", self.base_depth)
        _check_non_negative("depth_range", self.depth_range)
        _check_positive("depth_scale", self.depth_scale)
        _check_positive("min_depth", self.min_depth)
        if self.max_depth < self.min_depth:
            raise ConfigurationInvalid(
                f"max_depth ({self.max_depth}) must be >= min_depth ({self.min_depth})"
            )

    @property
    def effective_focal_length(self) -> float:
        """Focal length in pixels."""
        if self.focal_length is not None:
            return self.focal_length
        return compute_default_focal_length(self.image_size[0], self.fov_deg)

    def build_camera(self) -> Camera:
        """Pinhole camera at the origin with this calibration's intrinsics."""
        f = self.effective_focal_length
        return Camera(focal_length=(f, f), image_size=self.image_size)


@dataclass
class AnchorConfig:
    """Proportions of the mounted object relative to the measured face."""
    mount_up_offset: float = 0.005    # meters above the eye line
    mount_offset_ratio: float = 0.4   # x eye distance, centre to left/right mount
    arm_offset_ratio: float = 0.6     # x eye distance, centre to arm start
    mount_width_ratio: float = 0.35   # x eye distance
    mount_aspect: float = 0.8         # mount height / mount width
    bridge_width_ratio: float = 0.15  # x eye distance
    arm_length_ratio: float = 1.2     # x temple width

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        _check_non_negative("mount_offset_ratio", self.mount_offset_ratio)
        _check_non_negative("arm_offset_ratio", self.arm_offset_ratio)
        _check_positive("mount_width_ratio", self.mount_width_ratio)
        _check_positive("mount_aspect", self.mount_aspect)
        _check_positive("bridge_width_ratio", self.bridge_width_ratio)
        _check_positive("arm_length_ratio", self.arm_length_ratio)


@dataclass
class FilterNoise:
    """Noise parameters for one constant-velocity estimator."""
    process_noise: float = 0.01
    measurement_noise: float = 0.1

    def __post_init__(self):
        _check_positive("process_noise", self.process_noise)
        _check_positive("measurement_noise", self.measurement_noise)


@dataclass
class KalmanConfig:
    """Estimator noise per tracked quantity."""
    position: FilterNoise = field(default_factory=lambda: FilterNoise(0.01, 0.1))
    rotation: FilterNoise = field(default_factory=lambda: FilterNoise(0.005, 0.05))
    scale: FilterNoise = field(default_factory=lambda: FilterNoise(0.001, 0.02))

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, dict):
                setattr(self, f.name, FilterNoise(**value))


@dataclass
class PositioningConfig:
    """Positioning engine parameters."""
    # Smoothing: weight given to the previous state (0 = raw, 1 = frozen)
    position_smoothing_factor: float = 0.7
    rotation_smoothing_factor: float = 0.8
    scale_smoothing_factor: float = 0.6

    # Stability and outlier rejection
    stability_threshold: float = 0.85
    tracking_confidence_threshold: float = 0.5
    outlier_position_threshold: float = 0.1   # meters per frame
    outlier_rotation_threshold: float = 1.0   # summed |delta| radians per frame
    max_consecutive_outliers: int = 3
    outlier_confidence_penalty: float = 0.8

    # Scaling
    base_scale: float = 1.0
    min_scale: float = 0.5
    max_scale: float = 2.0
    scale_adaptation_rate: float = 0.1
    scale_stability_factor: float = 0.95

    # Manual alignment correction
    position_offset: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation_offset: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    # Tracking loss (seconds)
    tracking_loss_timeout: float = 1.0
    hard_reset_timeout: float = 3.0
    max_dt: float = 0.25

    # History and jitter filters
    history_size: int = 30
    stability_window: int = 5
    stability_variance: float = 0.01
    position_filter_window: int = 5
    rotation_filter_window: int = 3

    algorithm: str = "hybrid"

    def __post_init__(self):
        self.position_offset = tuple(self.position_offset)
        self.rotation_offset = tuple(self.rotation_offset)
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigurationInvalid: If any value is out of range
        """
        for name in (
            "position_smoothing_factor",
            "rotation_smoothing_factor",
            "scale_smoothing_factor",
            "stability_threshold",
            "tracking_confidence_threshold",
            "outlier_confidence_penalty",
            "scale_adaptation_rate",
            "scale_stability_factor",
        ):
            _check_unit_interval(name, getattr(self, name))

        _check_positive("outlier_position_threshold", self.outlier_position_threshold)
        _check_positive("outlier_rotation_threshold", self.outlier_rotation_threshold)
        if self.max_consecutive_outliers < 1:
            raise ConfigurationInvalid(
                f"max_consecutive_outliers must be >= 1, got {self.max_consecutive_outliers}"
            )

        _check_positive("base_scale", self.base_scale)
        _check_positive("min_scale", self.min_scale)
        if self.max_scale < self.min_scale:
            raise ConfigurationInvalid(
                f"max_scale ({self.max_scale}) must be >= min_scale ({self.min_scale})"
            )

        _check_vector3("position_offset", self.position_offset)
        _check_vector3("rotation_offset", self.rotation_offset)

        _check_non_negative("tracking_loss_timeout", self.tracking_loss_timeout)
        _check_non_negative("hard_reset_timeout", self.hard_reset_timeout)
        if self.hard_reset_timeout < self.tracking_loss_timeout:
            raise ConfigurationInvalid(
                f"hard_reset_timeout ({self.hard_reset_timeout}) must be >= "
                f"tracking_loss_timeout ({self.tracking_loss_timeout})"
            )
        _check_positive("max_dt", self.max_dt)

        if self.stability_window < 2:
            raise ConfigurationInvalid(f"stability_window must be >= 2, got {self.stability_window}")
        if self.history_size < self.stability_window:
            raise ConfigurationInvalid(
                f"history_size ({self.history_size}) must be >= stability_window ({self.stability_window})"
            )
        _check_positive("stability_variance", self.stability_variance)
        if self.position_filter_window < 1 or self.rotation_filter_window < 1:
            raise ConfigurationInvalid("moving-average filter windows must be >= 1")

        if self.algorithm not in ALGORITHMS:
            raise ConfigurationInvalid(
                f"algorithm must be one of {ALGORITHMS}, got '{self.algorithm}'"
            )


def _section(cls, data: Optional[Dict[str, Any]], name: str):
    """Build a config dataclass from a dict, rejecting unknown keys."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationInvalid(f"'{name}' section must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationInvalid(f"Unknown option(s) in '{name}': {sorted(unknown)}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigurationInvalid(f"Invalid '{name}' section: {e}") from e


def _to_plain(value: Any) -> Any:
    """Convert tuples to lists recursively for YAML output."""
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (tuple, list)):
        return [_to_plain(v) for v in value]
    return value


@dataclass
class Config:
    """Complete configuration."""
    calibration: Calibration = field(default_factory=Calibration)
    anchors: AnchorConfig = field(default_factory=AnchorConfig)
    kalman: KalmanConfig = field(default_factory=KalmanConfig)
    positioning: PositioningConfig = field(default_factory=PositioningConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """
        Create config from a nested dict (as loaded from YAML).

        Missing sections and options take their defaults.

        Raises:
            ConfigurationInvalid: On unknown sections/options or invalid values
        """
        data = data or {}
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigurationInvalid(f"Unknown config section(s): {sorted(unknown)}")

        return cls(
            calibration=_section(Calibration, data.get('calibration'), 'calibration'),
            anchors=_section(AnchorConfig, data.get('anchors'), 'anchors'),
            kalman=_section(KalmanConfig, data.get('kalman'), 'kalman'),
            positioning=_section(PositioningConfig, data.get('positioning'), 'positioning'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(asdict(self))

    @classmethod
    def from_yaml(cls, filepath: str) -> "Config":
        """
        Load config from YAML file.

        Args:
            filepath: Path to YAML config file

        Returns:
            Config instance
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required for config files. "
                "Install with: pip install pyyaml"
            )

        with open(filepath, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    def to_yaml(self, filepath: str) -> None:
        """
        Save config to YAML file.

        Args:
            filepath: Path to save YAML config file
        """
        try:
            import yaml
        except ImportError:
            raise ImportError(
                "PyYAML is required for config files. "
                "Install with: pip install pyyaml"
            )

        with open(filepath, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def with_positioning(self, **changes) -> "Config":
        """Copy of this config with positioning options replaced (validated)."""
        return replace(self, positioning=replace(self.positioning, **changes))

    @staticmethod
    def generate_default_config_template() -> str:
        """
        Generate a default configuration template with comments.

        Returns:
            YAML string with comments explaining each option
        """
        return """# face2pose Configuration File
#
# Configures landmark-to-pose conversion and the positioning engine.
# Command-line arguments override values specified here.
# All lengths are in meters, all angles in radians, all durations in seconds.

# Anthropometric priors and camera approximation
calibration:
  average_eye_distance: 0.063
  average_face_width: 0.14
  average_face_height: 0.18

  # Capture resolution [width, height] in pixels
  image_size: [1280, 720]

  # Horizontal field of view in degrees (used when focal_length is null)
  fov_deg: 60.0
  focal_length: null

  # Depth estimation: relative_z (base_depth + z * depth_range) or
  # eye_distance (pinhole relation from the measured eye distance)
  depth_mode: "relative_z"
  base_depth: 1.0
  depth_range: 0.5
  depth_scale: 1.0
  depth_offset: 0.0
  min_depth: 0.3
  max_depth: 3.0

  # Nose-line pitch of a level head, subtracted from measured pitch
  neutral_nose_pitch: 0.0

# Mounted object proportions relative to the measured face
anchors:
  mount_up_offset: 0.005
  mount_offset_ratio: 0.4
  arm_offset_ratio: 0.6
  mount_width_ratio: 0.35
  mount_aspect: 0.8
  bridge_width_ratio: 0.15
  arm_length_ratio: 1.2

# Constant-velocity estimator noise per tracked quantity
kalman:
  position: {process_noise: 0.01, measurement_noise: 0.1}
  rotation: {process_noise: 0.005, measurement_noise: 0.05}
  scale: {process_noise: 0.001, measurement_noise: 0.02}

positioning:
  # Algorithm: basic, kalman, adaptive, hybrid
  algorithm: "hybrid"

  # Weight of the previous state when smoothing (0 = raw, 1 = frozen)
  position_smoothing_factor: 0.7
  rotation_smoothing_factor: 0.8
  scale_smoothing_factor: 0.6

  # Confidence needed for a stable pose / for a frame to be used at all
  stability_threshold: 0.85
  tracking_confidence_threshold: 0.5

  # Per-frame jumps larger than these are rejected as outliers
  outlier_position_threshold: 0.1
  outlier_rotation_threshold: 1.0
  max_consecutive_outliers: 3
  outlier_confidence_penalty: 0.8

  base_scale: 1.0
  min_scale: 0.5
  max_scale: 2.0
  scale_adaptation_rate: 0.1
  scale_stability_factor: 0.95

  # Manual alignment correction
  position_offset: [0.0, 0.0, 0.0]
  rotation_offset: [0.0, 0.0, 0.0]

  tracking_loss_timeout: 1.0
  hard_reset_timeout: 3.0
  max_dt: 0.25

  history_size: 30
  stability_window: 5
  stability_variance: 0.01
  position_filter_window: 5
  rotation_filter_window: 3
"""


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create command-line argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="face2pose",
        description="Replay a recorded face landmark session through the pose tracker and write per-frame object transforms",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        epilog="Configuration file (YAML) can be used to set all options. Command-line arguments override config file values."
    )

    parser.add_argument(
        "--config", "-c",
        help="Path to YAML configuration file"
    )

    parser.add_argument(
        "input",
        nargs='?',
        help="Path to landmark recording (.json)"
    )

    parser.add_argument(
        "--output", "-o",
        help="Write transforms to this JSON file (default: stdout)"
    )

    parser.add_argument(
        "--save-config",
        metavar="PATH",
        help="Save default configuration to YAML file and exit"
    )

    tracking_group = parser.add_argument_group("Tracking Options")
    tracking_group.add_argument(
        "--algorithm",
        choices=list(ALGORITHMS),
        help="Positioning algorithm"
    )
    tracking_group.add_argument(
        "--depth-mode",
        choices=list(DEPTH_MODES),
        help="Landmark depth estimation mode"
    )
    tracking_group.add_argument(
        "--resolution",
        type=str,
        metavar="WxH",
        help="Capture resolution of the recording (e.g., 1280x720)"
    )
    tracking_group.add_argument(
        "--fps",
        type=float,
        default=30.0,
        help="Frame rate used to synthesize timestamps for frames without one"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> Config:
    """
    Create config from parsed command-line arguments.

    Loads config file if specified, then applies command-line overrides.

    Raises:
        ConfigurationInvalid: If an override is malformed or out of range
    """
    config = Config.from_yaml(args.config) if args.config else Config()

    calibration_changes = {}
    if args.resolution:
        try:
            w, h = args.resolution.lower().split('x')
            calibration_changes['image_size'] = (int(w), int(h))
        except ValueError:
            raise ConfigurationInvalid(
                f"Invalid resolution format: {args.resolution}. Use WxH (e.g., 1280x720)"
            )
    if args.depth_mode:
        calibration_changes['depth_mode'] = args.depth_mode
    if calibration_changes:
        config = replace(config, calibration=replace(config.calibration, **calibration_changes))

    if args.algorithm:
        config = config.with_positioning(algorithm=args.algorithm)

    return config
