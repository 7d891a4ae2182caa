"""Surface drivers: one trial state machine per presentation surface."""

from renderbench.drivers.immersive import ImmersiveDriver, ImmersiveState
from renderbench.drivers.windowed import WindowedDriver

__all__ = ["ImmersiveDriver", "ImmersiveState", "WindowedDriver"]
