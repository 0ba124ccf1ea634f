from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Iterable

from starlette.datastructures import Headers, UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser

from .context import ConversionContext
from .errors import PayloadTooLargeError, ValidationError
from .interfaces import FOOTER_HTML, HEADER_HTML, INDEX_HTML, ConversionRequest
from .workspace import Workspace

CHUNK = 1024 * 1024


@dataclass(frozen=True)
class OptionPolicy:
    """Which renderer options a request may set.

    ``allowed`` of ``None`` lets every option through, which is the default:
    field names reach the renderer command line verbatim, so deployments that
    face untrusted clients should configure an allow-list.
    """

    allowed: frozenset[str] | None = None
    denied: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_names(cls, allowed: Iterable[str] | None = None, denied: Iterable[str] = ()) -> "OptionPolicy":
        def _norm(names: Iterable[str]) -> frozenset[str]:
            return frozenset(n.strip().lstrip("-") for n in names if n.strip())

        return cls(allowed=_norm(allowed) if allowed else None, denied=_norm(denied))

    def rejected(self, names: Iterable[str]) -> list[str]:
        out = []
        for name in names:
            if name in self.denied or (self.allowed is not None and name not in self.allowed):
                out.append(name)
        return sorted(out)


class RequestDecoder:
    def __init__(self, *, max_upload_bytes: int | None = None, option_policy: OptionPolicy | None = None) -> None:
        self._max_upload_bytes = max_upload_bytes
        self._policy = option_policy or OptionPolicy()

    async def _limited(self, stream: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        # The limit applies to the raw body, before the parser spools anything.
        received = 0
        async for chunk in stream:
            received += len(chunk)
            if self._max_upload_bytes is not None and received > self._max_upload_bytes:
                raise PayloadTooLargeError(f"upload exceeds {self._max_upload_bytes} bytes")
            yield chunk

    async def decode(
        self,
        content_type: str | None,
        stream: AsyncIterator[bytes],
        workspace: Workspace,
        ctx: ConversionContext,
    ) -> tuple[ConversionRequest, dict[str, Path]]:
        """Consume a multipart body, persisting file parts into ``workspace``.

        Returns the validated request plus the on-disk path of every uploaded
        file keyed by its file name. Raises ``ValidationError`` when the body
        cannot be parsed, the primary document is missing or empty, or an
        option is rejected by the policy.
        """
        ct = (content_type or "").strip()
        if not ct.lower().startswith("multipart/form-data") or "boundary=" not in ct.lower():
            raise ValidationError(f"expected multipart/form-data body, got {ct or 'no content-type'}")

        parser = MultiPartParser(Headers({"content-type": ct}), self._limited(stream))
        try:
            form = await parser.parse()
        except (MultiPartException, ValueError) as e:
            raise ValidationError(f"failed to parse multipart form: {e}", kind="parse_multipart_form_failed") from e

        contents: dict[str, bytes] = {}
        paths: dict[str, Path] = {}
        options: dict[str, str] = {}
        try:
            for name, value in form.multi_items():
                if isinstance(value, UploadFile):
                    if not value.filename:
                        ctx.logger.debug("Skipping file part %r without a file name", name)
                        continue
                    data = bytearray()
                    while True:
                        chunk = await value.read(CHUNK)
                        if not chunk:
                            break
                        data.extend(chunk)
                    path = workspace.write_part(value.filename, bytes(data))
                    paths[path.name] = path
                    contents[path.name] = bytes(data)
                    ctx.logger.debug("Stored part %s (%d bytes)", path.name, len(data))
                else:
                    options.setdefault(name, value)
        finally:
            await form.close()

        rejected = self._policy.rejected(options)
        if rejected:
            raise ValidationError(f"renderer options not allowed: {', '.join(rejected)}", kind="option_not_allowed")

        index = contents.get(INDEX_HTML)
        if not index:
            raise ValidationError("index.html file is required", kind="index_html_file_not_found")

        request = ConversionRequest(
            index_html=index,
            header_html=contents.get(HEADER_HTML) or None,
            footer_html=contents.get(FOOTER_HTML) or None,
            options=options,
        )
        return request, paths
