"""Error taxonomy for the signal pipeline."""


class SignalForgeError(Exception):
    """Base class for all pipeline errors."""


class InsufficientDataError(SignalForgeError):
    """Fewer candles than a detector needs.

    Never surfaces from a public detector call; detectors turn it into an
    empty or neutral result.
    """

    def __init__(self, needed: int, got: int, what: str = "analysis") -> None:
        super().__init__(f"Need at least {needed} candles for {what}, got {got}")
        self.needed = needed
        self.got = got


class InvalidConfigurationError(SignalForgeError, ValueError):
    """Unknown profile, timeframe or detector, or a malformed setting."""


class UpstreamUnavailableError(SignalForgeError):
    """The Candle Source or Risk Service could not be reached."""
