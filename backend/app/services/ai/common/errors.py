"""Error taxonomy shared by every AI scope."""

from __future__ import annotations


class AIServiceError(Exception):
    """Base class for failures talking to the AI collaborator."""


class ServiceUnavailable(AIServiceError):
    """No credential (or no usable provider) is configured for the scope."""


class TransportError(AIServiceError):
    """The call did not complete: network failure, timeout, or non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(AIServiceError):
    """The call completed but the payload could not be decoded into the contract."""

    def __init__(self, message: str, *, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class InvalidDocument(AIServiceError):
    """The collaborator classified the upload as not a financial document.

    This is a legitimate outcome, not a failure: ``reason`` is shown to the
    user verbatim.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason
