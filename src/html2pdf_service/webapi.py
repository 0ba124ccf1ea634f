import asyncio
import logging
import os
import shutil
import time
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.requests import ClientDisconnect
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from html2pdf_service.conversion import (
    ConversionCancelledError,
    ConversionContext,
    ConversionError,
    ConversionService,
    OptionPolicy,
    ProcessSupervisor,
    PrometheusMetrics,
    RequestLogger,
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="HTML to PDF Service",
    version=os.getenv("HTML2PDF_SERVICE_VERSION", "0.1.0"),
    description=(
        "RESTful API converting an uploaded index.html (with optional header "
        "and footer) into PDF using wkhtmltopdf."
    ),
)


def _csv(name: str) -> list[str]:
    return [v.strip() for v in os.getenv(name, "").split(",") if v.strip()]


# Global configuration defaults
RENDERER_BIN = os.getenv("KWKHTMLTOPDF_BIN", "wkhtmltopdf")
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "30"))
RENDER_TIMEOUT_SEC = float(os.getenv("RENDER_TIMEOUT_SEC", "300"))
WORK_DIR = os.getenv("WORK_DIR") or None
DISCONNECT_POLL_SEC = float(os.getenv("DISCONNECT_POLL_SEC", "0.5"))
# Empty allow-list means every form field is forwarded to the renderer.
ALLOWED_OPTIONS = _csv("RENDERER_ALLOWED_OPTIONS")
DENIED_OPTIONS = _csv("RENDERER_DENIED_OPTIONS")

SERVICE: ConversionService | None = None
METRICS: PrometheusMetrics | None = None


class PDFResponse(Response):
    """PDF body whose delivery failures are logged instead of raised.

    By the time the body is written the PDF exists, so a client that went
    away mid-transfer is recorded separately from render failures.
    """

    media_type = "application/pdf"

    def __init__(self, content: bytes, *, log: logging.LoggerAdapter, metrics: PrometheusMetrics, **kwargs) -> None:
        super().__init__(content=content, **kwargs)
        self._log = log
        self._metrics = metrics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except OSError as e:
            self._log.error("Failed to write PDF to response: %s", e)
            self._metrics.record_error("response_write_failed", str(e))


@app.on_event("startup")
async def _startup() -> None:
    global SERVICE, METRICS
    METRICS = PrometheusMetrics()
    renderer = ProcessSupervisor(RENDERER_BIN)
    SERVICE = ConversionService(
        renderer=renderer,
        metrics=METRICS,
        work_dir=WORK_DIR,
        max_upload_bytes=MAX_UPLOAD_MB * 1024 * 1024,
        option_policy=OptionPolicy.from_names(ALLOWED_OPTIONS, DENIED_OPTIONS),
    )
    if shutil.which(RENDERER_BIN) is None:
        logger.warning("Renderer %r not found on PATH; conversions will fail", RENDERER_BIN)
    logger.info(
        "Service ready: renderer=%s max_upload=%sMB timeout=%ss allow-list=%s",
        RENDERER_BIN,
        MAX_UPLOAD_MB,
        RENDER_TIMEOUT_SEC or "none",
        ",".join(ALLOWED_OPTIONS) or "off",
    )


class RequestMetricsMiddleware:
    """Records active requests, duration and totals per path and status.

    Plain ASGI: ``receive`` is passed through as is and ``send`` is only
    observed for the response status, so disconnects and write failures
    reach the endpoint.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        recorder = METRICS
        if scope["type"] != "http" or recorder is None:
            await self.app(scope, receive, send)
            return

        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

        async def send_with_status(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        start = time.perf_counter()
        recorder.increase_active_requests()
        try:
            await self.app(scope, receive, send_with_status)
        finally:
            recorder.decrease_active_requests()
            recorder.observe_request_duration(scope["path"], time.perf_counter() - start)
            recorder.increase_request_total(scope["path"], status_code)


app.add_middleware(RequestMetricsMiddleware)


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/status")
def status_check() -> Response:
    return Response(status_code=status.HTTP_200_OK)


@app.get("/metrics")
def metrics() -> Response:
    assert METRICS is not None
    return Response(content=METRICS.render(), media_type=CONTENT_TYPE_LATEST)


async def _watch_disconnect(request: Request, ctx: ConversionContext, body_done: asyncio.Event) -> None:
    # Polling receive() before the body is consumed would steal body chunks.
    await body_done.wait()
    while not ctx.cancelled:
        if await request.is_disconnected():
            ctx.cancel("client disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_SEC)


@app.post("/pdf", response_class=PDFResponse)
@app.post("/v1/pdf/", response_class=PDFResponse)
async def convert_html_to_pdf(request: Request) -> Response:
    """Convert an uploaded HTML document to PDF.

    Accepts multipart/form-data with a file part named index.html (required),
    optional header.html and footer.html file parts, and any number of plain
    fields forwarded to the renderer as ``--<name> [<value>]`` options.
    """
    global SERVICE
    assert SERVICE is not None and METRICS is not None

    trace_id = request.headers.get("x-trace-id")
    log = RequestLogger.for_request(__name__, trace_id)
    ctx = ConversionContext.with_timeout(log, RENDER_TIMEOUT_SEC or None)
    headers = {"X-Trace-ID": trace_id} if trace_id else {}
    body_done = asyncio.Event()

    async def body() -> AsyncIterator[bytes]:
        try:
            async for chunk in request.stream():
                yield chunk
        except ClientDisconnect:
            ctx.cancel("client disconnected")
            raise ConversionCancelledError("client disconnected while uploading") from None
        body_done.set()

    watcher = asyncio.create_task(_watch_disconnect(request, ctx, body_done))
    try:
        result = await SERVICE.convert(request.headers.get("content-type"), body(), ctx)
    except ConversionError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"code": e.kind, "message": str(e)},
            headers=headers or None,
        )
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)

    headers["Content-Disposition"] = "attachment; filename=output.pdf"
    return PDFResponse(content=result.pdf, log=log, metrics=METRICS, headers=headers)


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("html2pdf_service.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
