from dataclasses import dataclass, field
from typing import Protocol, Sequence

from .context import ConversionContext

INDEX_HTML = "index.html"
HEADER_HTML = "header.html"
FOOTER_HTML = "footer.html"


class RendererGateway(Protocol):
    async def execute(self, argv: Sequence[str], ctx: ConversionContext) -> bytes:
        """Run the external renderer with ``argv`` and return the PDF bytes.

        Implementations must not leave the renderer running once they return
        or raise.
        """


class MetricsRecorder(Protocol):
    def record_error(self, kind: str, message: str) -> None:
        ...

    def increase_active_requests(self) -> None:
        ...

    def decrease_active_requests(self) -> None:
        ...

    def observe_request_duration(self, path: str, seconds: float) -> None:
        ...

    def increase_request_total(self, path: str, status_code: int) -> None:
        ...

    def observe_pdf_size(self, size: int) -> None:
        ...


@dataclass(frozen=True)
class ConversionRequest:
    index_html: bytes
    header_html: bytes | None = None
    footer_html: bytes | None = None
    # An empty value means the option is a bare flag.
    options: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ConversionResult:
    pdf: bytes
    media_type: str = "application/pdf"

    @property
    def size(self) -> int:
        return len(self.pdf)
