"""Exception classes for the target scanner.

Only structural failures are raised to the caller. An empty scan, a failed
recognition or a degenerate contour is never an exception.
"""


class ConfigError(Exception):
    """Raised when a pipeline configuration value is malformed.

    Raised at scan start (or when the config is built) so a bad setting never
    reaches the image-processing stages.

    Args:
        field: Dotted name of the offending setting (e.g. "flatness.std_threshold").
        value: The rejected value.
        reason: Human-readable explanation of what was expected.
    """

    def __init__(self, field: str, value: object, reason: str) -> None:
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(
            f"Invalid config value for '{field}': {value!r}. {reason}"
        )


class CaptureError(Exception):
    """Raised when the capture collaborator cannot produce a frame.

    The scanner does not retry; retry policy belongs to the caller.

    Args:
        source: Short description of the capture source ("screen", a file path).
        reason: Human-readable explanation of the failure.
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Capture failed for {source}: {reason}")
