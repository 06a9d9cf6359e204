class BreakerError(Exception):
    """Base class for every error raised by the degradation breaker."""


class ParseError(BreakerError):
    """A notification or request body could not be decoded."""


class StoreUnavailable(BreakerError):
    """The state store could not be read or written."""


class DownstreamUnavailable(BreakerError):
    """
    A level handler could not be reached, timed out or faulted in transport.

    Carries the handler identity so fallback responses can name the
    intended target.
    """

    def __init__(self, service_type: str, reason: str):
        super().__init__(f"{service_type} unavailable: {reason}")
        self.service_type = service_type
        self.reason = reason
