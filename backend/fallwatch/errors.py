from __future__ import annotations


class FallWatchError(Exception):
    """Base class for errors raised by fallwatch."""


class MalformedFrame(FallWatchError):
    """A pose record or image could not be interpreted."""


class FrameAcquisitionError(FallWatchError):
    """The video source can no longer deliver frames."""


class DispatchRejected(FallWatchError):
    """The call provider refused the request (e.g. invalid recipient). Not retryable."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class DispatchUnavailable(FallWatchError):
    """The call provider could not be reached or failed on its side."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
