import asyncio
from pathlib import Path
from typing import AsyncIterator

from .arguments import build_arguments
from .context import ConversionContext
from .decoder import OptionPolicy, RequestDecoder
from .errors import ConversionCancelledError, ConversionError
from .interfaces import ConversionResult, MetricsRecorder, RendererGateway
from .workspace import Workspace


class ConversionService:
    """Core domain service turning a multipart upload into a PDF.

    This service is framework-agnostic. The HTTP layer hands it the raw body
    stream together with a ``ConversionContext``; the renderer and the
    metrics recorder are injected gateways, so tests and other front-ends can
    reuse the same orchestration.
    """

    def __init__(
        self,
        renderer: RendererGateway,
        metrics: MetricsRecorder,
        *,
        work_dir: str | Path | None = None,
        max_upload_bytes: int | None = None,
        option_policy: OptionPolicy | None = None,
    ) -> None:
        self._renderer = renderer
        self._metrics = metrics
        self._work_dir = work_dir
        self._decoder = RequestDecoder(max_upload_bytes=max_upload_bytes, option_policy=option_policy)

    @property
    def metrics(self) -> MetricsRecorder:
        return self._metrics

    async def convert(
        self,
        content_type: str | None,
        stream: AsyncIterator[bytes],
        ctx: ConversionContext,
    ) -> ConversionResult:
        try:
            pdf = await self._convert(content_type, stream, ctx)
        except ConversionError as e:
            self._metrics.record_error(e.kind, str(e))
            ctx.logger.error("Conversion failed (%s): %s", e.kind, e)
            raise
        self._metrics.observe_pdf_size(len(pdf))
        ctx.logger.info("Generated PDF size: %d bytes", len(pdf))
        return ConversionResult(pdf=pdf)

    async def _convert(self, content_type: str | None, stream: AsyncIterator[bytes], ctx: ConversionContext) -> bytes:
        with Workspace.acquire(self._work_dir) as workspace:
            ctx.logger.info("Temporary directory created: %s", workspace.path)
            try:
                request, paths = await asyncio.wait_for(
                    self._decoder.decode(content_type, stream, workspace, ctx),
                    timeout=ctx.remaining(),
                )
            except asyncio.TimeoutError:
                raise ConversionCancelledError("deadline exceeded while reading request") from None

            if ctx.cancelled:
                raise ConversionCancelledError(ctx.cause or "cancelled before launch")

            argv = build_arguments(request, paths)
            ctx.logger.info(
                "Prepared renderer arguments (options=%d, has_header=%s, has_footer=%s)",
                len(request.options),
                request.header_html is not None,
                request.footer_html is not None,
            )
            return await self._renderer.execute(argv, ctx)
