"""
Constant-velocity Kalman filter for 3D points.

State vector: [x, y, z, vx, vy, vz]
Measurement:  [x, y, z]

Generic: nothing here is face specific. The positioning engine runs one
instance each for position, rotation (Euler components as a 3-vector) and
scale.
"""

import logging
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# Innovation covariance determinants below this are treated as singular
SINGULAR_DETERMINANT = 1e-10

# Measurement matrix: position is observed, velocity is not
H = np.hstack([np.eye(3), np.zeros((3, 3))])


def invert_3x3(m: NDArray[np.float64]) -> Tuple[NDArray[np.float64], bool]:
    """
    Closed-form inverse of a 3x3 matrix via the adjugate.

    Args:
        m: 3x3 matrix

    Returns:
        (inverse, ok). If |det| < 1e-10 the matrix is treated as singular
        and (identity, False) is returned instead of dividing by near-zero.
    """
    det = (
        m[0, 0] * (m[1, 1] * m[2, 2] - m[2, 1] * m[1, 2])
        - m[0, 1] * (m[1, 0] * m[2, 2] - m[1, 2] * m[2, 0])
        + m[0, 2] * (m[1, 0] * m[2, 1] - m[1, 1] * m[2, 0])
    )

    if abs(det) < SINGULAR_DETERMINANT:
        return np.eye(3), False

    inv_det = 1.0 / det
    inverse = np.array([
        [
            (m[1, 1] * m[2, 2] - m[2, 1] * m[1, 2]),
            (m[0, 2] * m[2, 1] - m[0, 1] * m[2, 2]),
            (m[0, 1] * m[1, 2] - m[0, 2] * m[1, 1]),
        ],
        [
            (m[1, 2] * m[2, 0] - m[1, 0] * m[2, 2]),
            (m[0, 0] * m[2, 2] - m[0, 2] * m[2, 0]),
            (m[0, 2] * m[1, 0] - m[0, 0] * m[1, 2]),
        ],
        [
            (m[1, 0] * m[2, 1] - m[1, 1] * m[2, 0]),
            (m[0, 1] * m[2, 0] - m[0, 0] * m[2, 1]),
            (m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0]),
        ],
    ], dtype=np.float64) * inv_det

    return inverse, True


def transition_matrix(dt: float) -> NDArray[np.float64]:
    """Constant-velocity state transition for a time step of dt seconds."""
    F = np.eye(6)
    F[0, 3] = F[1, 4] = F[2, 5] = dt
    return F


def process_noise_matrix(dt: float, q: float) -> NDArray[np.float64]:
    """
    Discretized white-noise-acceleration process noise.

    Per axis: [[dt^4/4, dt^3/2], [dt^3/2, dt^2]] * q
    """
    dt2 = dt * dt
    dt3 = dt2 * dt
    dt4 = dt3 * dt

    Q = np.zeros((6, 6))
    for axis in range(3):
        p, v = axis, axis + 3
        Q[p, p] = dt4 / 4.0
        Q[p, v] = Q[v, p] = dt3 / 2.0
        Q[v, v] = dt2
    return Q * q


class ConstantVelocityEstimator:
    """
    Kalman filter tracking a 3D point under a constant-velocity model.

    Usage:
        kf = ConstantVelocityEstimator(process_noise=0.01, measurement_noise=0.1)
        kf.predict(1 / 30)
        kf.update(np.array([x, y, z]))
        kf.position, kf.velocity
    """

    def __init__(
        self,
        process_noise: float = 0.01,
        measurement_noise: float = 0.1,
        initial_position: Optional[NDArray[np.float64]] = None,
        dt: float = 1.0 / 30.0
    ):
        """
        Args:
            process_noise: Acceleration noise intensity q
            measurement_noise: Variance of each measured coordinate
            initial_position: Starting position (default: origin), zero velocity
            dt: Default time step for predict() without an argument
        """
        if process_noise <= 0 or measurement_noise <= 0:
            raise ValueError(
                f"Noise parameters must be positive, got process_noise={process_noise}, "
                f"measurement_noise={measurement_noise}"
            )

        self.process_noise = float(process_noise)
        self.measurement_noise = float(measurement_noise)
        self.dt = float(dt)
        self.singular_updates = 0

        self.state = np.zeros(6)
        self.covariance = np.eye(6)
        if initial_position is not None:
            self.state[:3] = initial_position

    @property
    def position(self) -> NDArray[np.float64]:
        return self.state[:3].copy()

    @property
    def velocity(self) -> NDArray[np.float64]:
        return self.state[3:].copy()

    @property
    def position_uncertainty(self) -> float:
        """Mean standard deviation of the position components."""
        return float(np.sqrt(np.trace(self.covariance[:3, :3])) / 3.0)

    def predict(self, dt: Optional[float] = None) -> None:
        """
        Advance the state by dt seconds.

        x = F x,  P = F P F^T + Q

        Args:
            dt: Time step in seconds (default: the last time step used)

        Raises:
            ValueError: If dt is negative
        """
        if dt is not None:
            if dt < 0:
                raise ValueError(f"Time step must be non-negative, got {dt}")
            self.dt = float(dt)

        F = transition_matrix(self.dt)
        Q = process_noise_matrix(self.dt, self.process_noise)

        self.state = F @ self.state
        self.covariance = F @ self.covariance @ F.T + Q

    def update(
        self,
        measurement: NDArray[np.float64],
        measurement_noise: Optional[float] = None
    ) -> bool:
        """
        Incorporate a position measurement.

        Args:
            measurement: Measured position, shape (3,)
            measurement_noise: Variance for this measurement only
                              (default: the configured measurement_noise)

        Returns:
            True for a normal update, False if the innovation covariance was
            singular and an identity inverse was used (degraded update)
        """
        z = np.asarray(measurement, dtype=np.float64).reshape(3)
        r = self.measurement_noise if measurement_noise is None else float(measurement_noise)

        innovation = z - H @ self.state
        S = H @ self.covariance @ H.T + np.eye(3) * r

        S_inv, ok = invert_3x3(S)
        if not ok:
            self.singular_updates += 1
            logger.warning(
                "Singular innovation covariance (update %d), using identity inverse",
                self.singular_updates
            )

        K = self.covariance @ H.T @ S_inv

        self.state = self.state + K @ innovation
        self.covariance = (np.eye(6) - K @ H) @ self.covariance
        return ok

    def reset(self, position: NDArray[np.float64]) -> None:
        """
        Restart tracking at a position with zero velocity and unit covariance.
        """
        state = np.zeros(6)
        state[:3] = position
        self.state = state
        self.covariance = np.eye(6)

    def copy(self) -> "ConstantVelocityEstimator":
        clone = ConstantVelocityEstimator(self.process_noise, self.measurement_noise, dt=self.dt)
        clone.state = self.state.copy()
        clone.covariance = self.covariance.copy()
        clone.singular_updates = self.singular_updates
        return clone
