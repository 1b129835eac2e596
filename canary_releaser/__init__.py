"""canary-releaser - canary deployment of release assets across a host fleet."""

__version__ = "0.4.0"

from .config import ReleaserConfig
from .coordinator import RolloutCoordinator
from .models import LATEST_TAG, CycleOutcome, InstallDecision

__all__ = [
    "LATEST_TAG",
    "CycleOutcome",
    "InstallDecision",
    "ReleaserConfig",
    "RolloutCoordinator",
]
