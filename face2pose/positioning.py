"""
Positioning engine: per-frame object transform from head pose measurements.

State machine:
    UNINITIALIZED -> TRACKING -> TRACKING_LOST -> (TRACKING | RESET)

Per usable frame (confidence >= tracking_confidence_threshold):
1. Gate the measurement against the previous state (outlier rejection)
2. Blend adaptive size-scaling toward the measured face
3. Run the selected smoothing algorithm
4. Moving-average jitter reduction
5. Apply the manual position/rotation offset
6. Append to history, score stability, publish

Low-confidence frames freeze the last published state. Loss timers count
from the timestamp of the last usable frame.
"""

import logging
import time
from dataclasses import replace
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from .algorithms import Candidate, FilterBank, Measurement, get_algorithm
from .config import Calibration, KalmanConfig, PositioningConfig
from .errors import ConfigurationInvalid
from .types import (
    AnchorPoints,
    FaceGeometry,
    HeadPose,
    PositioningQuality,
    PositioningState,
    TrackingHistory,
    TrackingStatus,
)
from .utils import position_variance

logger = logging.getLogger(__name__)

DEFAULT_DT = 1.0 / 30.0


class MovingAverageFilter:
    """
    Fixed-window moving average over vectors, one average per component.

    The first value fills the whole window, so output starts at the first
    input instead of ramping up from zero.
    """

    def __init__(self, window_size: int, dim: int = 3):
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self.window_size = window_size
        self.dim = dim
        self.reset()

    def reset(self) -> None:
        self.values = np.zeros((self.window_size, self.dim))
        self.index = 0
        self.is_initialized = False

    def update(self, value: NDArray[np.float64]) -> NDArray[np.float64]:
        value = np.asarray(value, dtype=np.float64)
        if not self.is_initialized:
            self.values[:] = value
            self.is_initialized = True
            return value.copy()

        self.values[self.index] = value
        self.index = (self.index + 1) % self.window_size
        return self.values.mean(axis=0)

    def copy(self) -> "MovingAverageFilter":
        clone = MovingAverageFilter(self.window_size, self.dim)
        clone.values = self.values.copy()
        clone.index = self.index
        clone.is_initialized = self.is_initialized
        return clone


class PositioningEngine:
    """
    Stateful per-session positioning engine.

    Single-threaded: one update_position() call per detector frame. The
    engine owns its filters, history and configuration exclusively.

    Usage:
        engine = PositioningEngine(PositioningConfig(algorithm="hybrid"))
        state = engine.update_position(pose, geometry, anchors, confidence)
        if state is not None:
            renderer.apply(state.to_matrix())
    """

    def __init__(
        self,
        config: Optional[PositioningConfig] = None,
        calibration: Optional[Calibration] = None,
        kalman: Optional[KalmanConfig] = None
    ):
        """
        Args:
            config: Positioning parameters (default: PositioningConfig())
            calibration: Calibration priors for adaptive scaling
            kalman: Estimator noise parameters
        """
        self._config = config if config is not None else PositioningConfig()
        self._calibration = calibration if calibration is not None else Calibration()
        self._kalman_config = kalman if kalman is not None else KalmanConfig()
        self._algorithm = get_algorithm(self._config.algorithm)
        self.reset()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def config(self) -> PositioningConfig:
        return self._config

    @property
    def algorithm(self) -> str:
        return self._algorithm.name

    @property
    def status(self) -> TrackingStatus:
        return self._status

    @property
    def current_state(self) -> Optional[PositioningState]:
        """Last published state (None before the first usable frame)."""
        return self._current_state

    @property
    def filters(self) -> FilterBank:
        return self._filters

    @property
    def consecutive_outliers(self) -> int:
        return self._consecutive_outliers

    def update_position(
        self,
        pose: HeadPose,
        geometry: FaceGeometry,
        anchors: AnchorPoints,
        confidence: float,
        timestamp: Optional[float] = None
    ) -> Optional[PositioningState]:
        """
        Process one frame.

        Args:
            pose: Head pose of this frame
            geometry: Face geometry of this frame
            anchors: Anchor points of this frame
            confidence: Detector confidence in [0, 1]
            timestamp: Frame time in seconds (default: time.monotonic())

        Returns:
            The published state for this frame. While confidence is below
            tracking_confidence_threshold this is the last good state,
            unchanged. None if no usable frame has been seen yet.

        Raises:
            ValueError: If confidence is outside [0, 1] or the measurement
                contains non-finite values. Engine state is left exactly as
                it was before the call.
        """
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"Confidence must be in [0, 1], got {confidence}")
        now = time.monotonic() if timestamp is None else float(timestamp)

        if confidence < self._config.tracking_confidence_threshold:
            return self._handle_low_confidence(now)

        snapshot = self._snapshot()
        try:
            return self._process_frame(pose, geometry, anchors, confidence, now)
        except Exception:
            self._restore(snapshot)
            raise

    def set_algorithm(self, name: str) -> None:
        """
        Switch smoothing algorithm, keeping the rest of the configuration.

        Estimators are reseeded at the last known state and history is
        cleared so covariance from one estimator is not mixed into another.

        Raises:
            ConfigurationInvalid: If name is not a known algorithm
        """
        self._config = replace(self._config, algorithm=name)
        self._algorithm = get_algorithm(name)
        self._reset_filters()
        logger.info("Positioning algorithm set to '%s'", name)

    def update_config(self, **changes) -> None:
        """
        Change positioning options.

        The merged configuration is validated before anything is applied;
        on error the previous configuration stays in force.

        Raises:
            ConfigurationInvalid: If an option is unknown or out of range
        """
        try:
            new_config = replace(self._config, **changes)
        except TypeError as e:
            raise ConfigurationInvalid(f"Unknown positioning option: {e}") from e

        old_config = self._config
        self._config = new_config

        if new_config.history_size != old_config.history_size:
            self._history = TrackingHistory(
                max_size=new_config.history_size,
                positions=self._history.positions,
                rotations=self._history.rotations,
                scales=self._history.scales,
                confidences=self._history.confidences,
                timestamps=self._history.timestamps,
            )
        if (new_config.position_filter_window != old_config.position_filter_window
                or new_config.rotation_filter_window != old_config.rotation_filter_window):
            self._build_jitter_filters()

        self._filters.adaptive.adaptation_rate = new_config.scale_adaptation_rate
        self._filters.adaptive.stability_factor = new_config.scale_stability_factor

        if new_config.algorithm != old_config.algorithm:
            self.set_algorithm(new_config.algorithm)

    def update_calibration(self, calibration: Calibration) -> None:
        """Use new calibration priors for adaptive scaling from the next frame."""
        self._calibration = calibration
        self._filters.adaptive.calibration = calibration

    def get_positioning_quality(self) -> PositioningQuality:
        """
        Composite quality of the current output, computed on demand.

        All zeros until the history holds stability_window entries.
        """
        window = self._config.stability_window
        if self._current_state is None or len(self._history) < window:
            return PositioningQuality()

        stability = 1.0 if self._current_state.is_stable else 0.5
        accuracy = self._current_state.confidence
        spread = position_variance(self._history.recent_positions(window))
        smoothness = 1.0 - min(1.0, spread * 100.0)
        speed = float(np.linalg.norm(self._filters.kalman_position.velocity))
        responsiveness = min(1.0, speed * 10.0)
        overall = (stability + accuracy + smoothness + responsiveness) / 4.0

        return PositioningQuality(
            stability=stability,
            accuracy=accuracy,
            smoothness=smoothness,
            responsiveness=responsiveness,
            overall_score=overall,
        )

    def get_history(self) -> TrackingHistory:
        """Copy of the tracking history."""
        return self._history.copy()

    def reset(self) -> None:
        """Forget all tracking state (new session); configuration is kept."""
        self._filters = FilterBank(self._kalman_config, self._calibration, self._config)
        self._build_jitter_filters()
        self._history = TrackingHistory(max_size=self._config.history_size)
        self._current_state: Optional[PositioningState] = None
        self._filtered: Optional[Candidate] = None
        self._status = TrackingStatus.UNINITIALIZED
        self._last_frame_time: Optional[float] = None
        self._consecutive_outliers = 0

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def _process_frame(
        self,
        pose: HeadPose,
        geometry: FaceGeometry,
        anchors: AnchorPoints,
        confidence: float,
        now: float
    ) -> PositioningState:
        cfg = self._config

        if self._last_frame_time is None:
            dt = DEFAULT_DT
        else:
            elapsed = now - self._last_frame_time
            if elapsed > cfg.hard_reset_timeout and self._filtered is not None:
                logger.info("No usable frame for %.2fs, resetting filters", elapsed)
                self._hard_reset()
            dt = float(np.clip(elapsed, 0.0, cfg.max_dt))

        measurement = Measurement(
            position=np.asarray(anchors.center_mount, dtype=np.float64),
            rotation=np.asarray(pose.rotation, dtype=np.float64),
            scale=pose.scale,
            confidence=confidence,
            dt=dt,
        )
        if not (np.all(np.isfinite(measurement.position))
                and np.all(np.isfinite(measurement.rotation))
                and np.isfinite(measurement.scale)):
            raise ValueError("Measurement contains non-finite values")

        previous = self._filtered
        if previous is not None and self._is_outlier(measurement, previous):
            self._consecutive_outliers += 1
            if self._consecutive_outliers < cfg.max_consecutive_outliers:
                logger.debug(
                    "Rejected outlier frame (%d consecutive)", self._consecutive_outliers
                )
                return self._publish_rejected(confidence, now)
            logger.info(
                "Accepting new trajectory after %d consecutive outliers",
                self._consecutive_outliers
            )
            previous = None
        self._consecutive_outliers = 0

        if previous is None:
            # First frame of a trajectory: start estimators at the measurement
            scale = np.clip(np.full(3, measurement.scale), cfg.min_scale, cfg.max_scale)
            self._filters.seed(measurement.position, measurement.rotation, scale)
            self._position_filter.reset()
            self._rotation_filter.reset()

        self._filters.adaptive.update(geometry)

        candidate = self._algorithm.process(measurement, previous, self._filters, cfg)

        filtered = Candidate(
            position=self._position_filter.update(candidate.position),
            rotation=self._rotation_filter.update(candidate.rotation),
            scale=candidate.scale,
        )
        self._filtered = filtered

        position = filtered.position + np.asarray(cfg.position_offset)
        rotation = filtered.rotation + np.asarray(cfg.rotation_offset)

        state = PositioningState(
            position=position,
            rotation=rotation,
            scale=filtered.scale,
            confidence=confidence,
            is_stable=self._assess_stability(position, confidence),
            timestamp=now,
        )
        self._commit(state, now)
        return state

    def _publish_rejected(self, confidence: float, now: float) -> PositioningState:
        """Re-publish the previous state with reduced confidence."""
        previous = self._current_state
        reduced = confidence * self._config.outlier_confidence_penalty
        state = PositioningState(
            position=previous.position,
            rotation=previous.rotation,
            scale=previous.scale,
            confidence=reduced,
            is_stable=self._assess_stability(previous.position, reduced),
            timestamp=now,
        )
        self._commit(state, now)
        return state

    def _commit(self, state: PositioningState, now: float) -> None:
        self._history.append(state)
        self._current_state = state
        self._last_frame_time = now
        if self._status is not TrackingStatus.TRACKING:
            logger.info("Tracking (%s)", self._algorithm.name)
        self._status = TrackingStatus.TRACKING

    def _is_outlier(self, measurement: Measurement, previous: Candidate) -> bool:
        cfg = self._config
        position_diff = float(np.linalg.norm(measurement.position - previous.position))
        rotation_diff = float(np.sum(np.abs(measurement.rotation - previous.rotation)))
        return (position_diff > cfg.outlier_position_threshold
                or rotation_diff > cfg.outlier_rotation_threshold)

    def _assess_stability(self, position: NDArray[np.float64], confidence: float) -> bool:
        """
        Stable when confident and the last stability_window positions
        (including this one) barely move.
        """
        cfg = self._config
        if confidence < cfg.stability_threshold:
            return False

        recent = self._history.recent_positions(cfg.stability_window - 1) + [position]
        if len(recent) < cfg.stability_window:
            return False

        return position_variance(recent) < cfg.stability_variance

    # ------------------------------------------------------------------
    # Tracking loss
    # ------------------------------------------------------------------

    def _handle_low_confidence(self, now: float) -> Optional[PositioningState]:
        if self._current_state is None:
            return None

        cfg = self._config
        elapsed = now - self._last_frame_time

        if self._status is TrackingStatus.TRACKING and elapsed > cfg.tracking_loss_timeout:
            self._status = TrackingStatus.TRACKING_LOST
            logger.info("Tracking lost (%.2fs without a usable frame)", elapsed)

        if self._status is TrackingStatus.TRACKING_LOST and elapsed > cfg.hard_reset_timeout:
            logger.info("Tracking lost for %.2fs, resetting filters", elapsed)
            self._hard_reset()

        return self._current_state

    def _hard_reset(self) -> None:
        """
        Re-initialize estimators at the last known state and forget the
        trajectory, so the next usable frame starts a new one. The last
        published state is kept for frozen output.
        """
        self._reset_filters()
        self._filtered = None
        self._status = TrackingStatus.RESET

    def _reset_filters(self) -> None:
        if self._filtered is not None:
            self._filters.seed(
                self._filtered.position, self._filtered.rotation, self._filtered.scale
            )
        self._position_filter.reset()
        self._rotation_filter.reset()
        self._consecutive_outliers = 0
        self._history.clear()

    def _build_jitter_filters(self) -> None:
        self._position_filter = MovingAverageFilter(self._config.position_filter_window)
        self._rotation_filter = MovingAverageFilter(self._config.rotation_filter_window)

    # ------------------------------------------------------------------
    # Transactional frames
    # ------------------------------------------------------------------

    def _snapshot(self) -> tuple:
        return (
            self._filters.copy(),
            self._position_filter.copy(),
            self._rotation_filter.copy(),
            self._history.copy(),
            self._current_state,
            self._filtered,
            self._status,
            self._last_frame_time,
            self._consecutive_outliers,
        )

    def _restore(self, snapshot: tuple) -> None:
        (
            self._filters,
            self._position_filter,
            self._rotation_filter,
            self._history,
            self._current_state,
            self._filtered,
            self._status,
            self._last_frame_time,
            self._consecutive_outliers,
        ) = snapshot
