"""Exception hierarchy shared by every subsystem."""


class LauncherError(RuntimeError):
    """Base class for everything the launcher raises on purpose."""


# ------------------- Geometry -------------------
class CalibrationError(LauncherError):
    """Too few or degenerate correspondences to fit a homography."""


class ProjectionError(LauncherError):
    """The transform cannot map a point (no matrix, or w ~ 0)."""


# ------------------- Wire frames -------------------
class FrameError(LauncherError):
    """An inbound frame could not be decoded."""


class MalformedFrame(FrameError):
    """Wrong length, header or response code."""


class ChecksumMismatch(FrameError):
    """CRC low byte does not match the payload."""


# ------------------- Link (synchronous) -------------------
class LinkError(LauncherError):
    """A send was refused before anything hit the wire."""


class Busy(LinkError):
    """A command is already awaiting its acknowledgement."""


class NotConnected(LinkError):
    """The link has no usable command characteristic."""


# ------------------- Command outcome -------------------
class CommandFailure(LauncherError):
    """Reason a sent command resolved as failed."""


class Rejected(CommandFailure):
    """The machine answered with response code 0."""


class CommandTimeout(CommandFailure):
    """No valid acknowledgement arrived in time."""


class LinkLost(CommandFailure):
    """The transport dropped while the command was pending."""


class Cancelled(CommandFailure):
    """The session was torn down while the command was pending."""
