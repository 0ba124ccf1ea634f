class ConversionError(Exception):
    """Base class for every failure a conversion can end with.

    ``kind`` is the short label reported to the metrics recorder and returned
    to HTTP clients as the error code; ``status_code`` is the HTTP status the
    web layer answers with.
    """

    kind = "conversion_failed"
    status_code = 500

    def __init__(self, message: str, *, kind: str | None = None) -> None:
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class ValidationError(ConversionError):
    """Malformed or incomplete input (client fault)."""

    kind = "invalid_request"
    status_code = 400


class PayloadTooLargeError(ValidationError):
    kind = "payload_too_large"
    status_code = 413


class ResourceError(ConversionError):
    """Workspace or file I/O failure."""

    kind = "workspace_failed"


class LaunchError(ConversionError):
    """The renderer executable could not be started."""

    kind = "process_start_failed"


class StreamError(ConversionError):
    """Reading the renderer's standard output failed."""

    kind = "copy_output_failed"


class RenderError(ConversionError):
    """The renderer exited with a non-zero status."""

    kind = "process_failed"

    def __init__(self, message: str, *, stderr: str = "", kind: str | None = None) -> None:
        super().__init__(message, kind=kind)
        self.stderr = stderr


class EmptyOutputError(RenderError):
    kind = "empty_output"


class ConversionCancelledError(ConversionError):
    """The request was cancelled or ran past its deadline."""

    kind = "context_cancelled"
    status_code = 408

    def __init__(self, cause: str) -> None:
        super().__init__(f"conversion cancelled: {cause}")
        self.cause = cause
