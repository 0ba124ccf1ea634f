"""
Domain layer for HTML to PDF conversion.
Provides the request-scoped workspace, multipart decoding, renderer argument
construction and process supervision, composed by ConversionService so that
front-ends (HTTP or others) can use the same core logic.
"""

from .adapters import PrometheusMetrics
from .arguments import build_arguments, redact_arguments
from .context import ConversionContext, RequestLogger
from .decoder import OptionPolicy, RequestDecoder
from .errors import (
    ConversionCancelledError,
    ConversionError,
    EmptyOutputError,
    LaunchError,
    PayloadTooLargeError,
    RenderError,
    ResourceError,
    StreamError,
    ValidationError,
)
from .interfaces import ConversionRequest, ConversionResult, MetricsRecorder, RendererGateway
from .service import ConversionService
from .supervisor import ProcessSupervisor
from .workspace import Workspace
