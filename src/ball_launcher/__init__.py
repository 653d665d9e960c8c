"""Ball-launcher control package – re-export high-level API."""
from .processor import LauncherController, CalibrationResult          # noqa: F401
from .config import (                                                 # noqa: F401
    CourtConfig, HomographyConfig, FilterConfig, PlannerConfig,
    LinkConfig, SerialConfig, PositionLogConfig,
)
from .codec import MachineCommand, AckFrame, AckCode, SpinMode        # noqa: F401
from .homography import CalibrationSet, HomographyEngine              # noqa: F401
from .link import LinkSession, LinkState                              # noqa: F401
from .planner import CommandPlanner                                   # noqa: F401
from .tracker import PositionFilter, FullCovarianceFilter             # noqa: F401
