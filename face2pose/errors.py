"""
Exception types raised by face2pose.

Tracking loss is not an error: it is a tracked state (see
types.TrackingStatus). A singular innovation covariance is recoverable and
is reported by ConstantVelocityEstimator.update() returning False rather
than by raising.
"""


class Face2PoseError(Exception):
    """Base class for face2pose errors."""


class InsufficientLandmarks(Face2PoseError, ValueError):
    """
    A landmark frame lacks one or more of the indices the extractor needs.

    Fatal for the frame: it must be skipped without touching tracker state.
    """

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Landmark frame has {available} points, at least {required} are required"
        )


class ConfigurationInvalid(Face2PoseError, ValueError):
    """A configuration value is out of range or inconsistent."""
