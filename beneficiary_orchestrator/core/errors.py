from beneficiary_orchestrator.analysis.models import ErrorInfo
from beneficiary_orchestrator.core.enums import ErrorKind, ParseErrorReason


class AnalysisError(Exception):
    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_error_info(self) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=self.message)


class TransportError(AnalysisError):
    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def to_error_info(self) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=self.message, status_code=self.status_code)


class ParseError(AnalysisError):
    kind = ErrorKind.PARSE

    def __init__(self, reason: ParseErrorReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason

    def to_error_info(self) -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=self.message, reason=self.reason.value)

    def __repr__(self) -> str:
        return f"ParseError({self.reason.value!r}, {self.message!r})"


class AnalysisTimeoutError(AnalysisError):
    kind = ErrorKind.TIMEOUT

    def __init__(self, message: str, *, attempts: int, last_transport_error: TransportError | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_transport_error = last_transport_error

    def to_error_info(self) -> ErrorInfo:
        cause = self.last_transport_error.to_error_info() if self.last_transport_error else None
        return ErrorInfo(kind=self.kind, message=self.message, cause=cause)


class ApprovalError(Exception):
    """The current analysis state cannot be approved."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
