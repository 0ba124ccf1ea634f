import asyncio
import logging
import os
import signal
from typing import Sequence

from .arguments import redact_arguments
from .context import ConversionContext
from .errors import (
    ConversionCancelledError,
    EmptyOutputError,
    LaunchError,
    RenderError,
    StreamError,
)

CHUNK = 1024 * 1024
# How long to wait for stderr to reach EOF once the renderer has exited.
STDERR_GRACE_SEC = 1.0


class ProcessSupervisor:
    """Runs the external renderer once per call and collects its stdout.

    The renderer is started in its own session so that cancellation can kill
    the whole process group, grandchildren included. Stdout is drained on a
    separate task while the caller races completion against the context's
    cancellation and deadline; a renderer that fills its pipe can therefore
    never deadlock against us.
    """

    def __init__(self, binary: str = "wkhtmltopdf") -> None:
        self._binary = binary

    @property
    def binary(self) -> str:
        return self._binary

    async def execute(self, argv: Sequence[str], ctx: ConversionContext) -> bytes:
        log = ctx.logger
        argv = tuple(argv)
        log.info("Starting renderer process: %s %s", self._binary, redact_arguments(argv))
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary,
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            log.error("Failed to start %s: %s", self._binary, e)
            raise LaunchError(f"failed to start {self._binary}: {e}") from e

        log.info("Renderer process started pid=%s", proc.pid)
        completion = asyncio.create_task(self._drain_and_wait(proc))
        stderr_task = asyncio.create_task(self._capture(proc.stderr))
        cancel_waiter = asyncio.create_task(ctx.wait_cancelled())
        try:
            done, _ = await asyncio.wait(
                {completion, cancel_waiter},
                timeout=ctx.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if completion not in done:
                cause = ctx.cause if ctx.cancelled else "deadline exceeded"
                log.warning("Context cancelled (%s), killing renderer process pid=%s", cause, proc.pid)
                await self._kill(proc, log)
                raise ConversionCancelledError(cause)
            output, returncode = completion.result()
            stderr = await self._stderr_text(stderr_task)
        finally:
            cancel_waiter.cancel()
            if proc.returncode is None:
                await self._kill(proc, log)
            completion.cancel()
            stderr_task.cancel()
            await asyncio.gather(completion, stderr_task, cancel_waiter, return_exceptions=True)

        if returncode != 0:
            log.error("Renderer process failed pid=%s returncode=%s stderr=%s", proc.pid, returncode, stderr)
            reason = f"exit status {returncode}" if returncode > 0 else f"killed by signal {-returncode}"
            message = f"{self._binary} failed: {reason}"
            if stderr:
                message = f"{message}, stderr: {stderr}"
            raise RenderError(message, stderr=stderr)

        log.info("Renderer process completed pid=%s output_size=%d", proc.pid, len(output))
        if not output:
            log.error("Renderer produced no output pid=%s", proc.pid)
            raise EmptyOutputError(f"{self._binary} produced no output", stderr=stderr)
        return output

    async def _drain_and_wait(self, proc: asyncio.subprocess.Process) -> tuple[bytes, int]:
        buf = bytearray()
        try:
            while True:
                chunk = await proc.stdout.read(CHUNK)
                if not chunk:
                    break
                buf.extend(chunk)
        except OSError as e:
            raise StreamError(f"failed to read stdout: {e}") from e
        return bytes(buf), await proc.wait()

    @staticmethod
    async def _capture(stream: asyncio.StreamReader) -> bytes:
        try:
            return await stream.read()
        except OSError:
            return b""

    @staticmethod
    async def _stderr_text(task: "asyncio.Task[bytes]") -> str:
        try:
            raw = await asyncio.wait_for(asyncio.shield(task), timeout=STDERR_GRACE_SEC)
        except asyncio.TimeoutError:
            return ""
        return raw.decode("utf-8", errors="replace").strip()

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process, log: logging.LoggerAdapter) -> None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        except OSError as e:
            log.error("Failed to kill renderer process pid=%s: %s", proc.pid, e)
            proc.kill()
        await proc.wait()
