"""
Unit tests for multipart request decoding.
"""

import pytest

from conftest import byte_stream, encode_multipart, make_ctx
from html2pdf_service.conversion import (
    OptionPolicy,
    PayloadTooLargeError,
    RequestDecoder,
    ValidationError,
    Workspace,
)


async def _decode(files=(), fields=(), decoder=None, workspace=None):
    content_type, body = encode_multipart(files, fields)
    decoder = decoder or RequestDecoder()
    return await decoder.decode(content_type, byte_stream(body), workspace, make_ctx())


@pytest.mark.asyncio
async def test_decode_routes_reserved_files_and_options(work_root):
    with Workspace.acquire(work_root) as ws:
        request, paths = await _decode(
            files=[("index.html", b"<h1>body</h1>"), ("header.html", b"<p>h</p>"), ("footer.html", b"<p>f</p>")],
            fields=[("grayscale", ""), ("dpi", "150")],
            workspace=ws,
        )

        assert request.index_html == b"<h1>body</h1>"
        assert request.header_html == b"<p>h</p>"
        assert request.footer_html == b"<p>f</p>"
        assert request.options == {"grayscale": "", "dpi": "150"}
        assert paths["index.html"] == ws.path / "index.html"
        assert (ws.path / "header.html").read_bytes() == b"<p>h</p>"
        assert (ws.path / "footer.html").read_bytes() == b"<p>f</p>"


@pytest.mark.asyncio
async def test_header_and_footer_are_optional(work_root):
    with Workspace.acquire(work_root) as ws:
        request, paths = await _decode(files=[("index.html", b"x")], workspace=ws)
    assert request.header_html is None
    assert request.footer_html is None
    assert request.options == {}
    assert set(paths) == {"index.html"}


@pytest.mark.asyncio
async def test_missing_index_is_rejected_but_files_are_persisted(work_root):
    with Workspace.acquire(work_root) as ws:
        with pytest.raises(ValidationError) as exc:
            await _decode(files=[("header.html", b"h"), ("notes.txt", b"n")], workspace=ws)
        assert exc.value.kind == "index_html_file_not_found"
        assert sorted(p.name for p in ws.path.iterdir()) == ["header.html", "notes.txt"]


@pytest.mark.asyncio
async def test_empty_index_is_rejected(work_root):
    with Workspace.acquire(work_root) as ws:
        with pytest.raises(ValidationError):
            await _decode(files=[("index.html", b"")], workspace=ws)


@pytest.mark.asyncio
async def test_extra_files_are_written_and_ignored(work_root):
    with Workspace.acquire(work_root) as ws:
        request, paths = await _decode(files=[("index.html", b"x"), ("logo.svg", b"<svg/>")], workspace=ws)
        assert (ws.path / "logo.svg").read_bytes() == b"<svg/>"
    assert paths["logo.svg"].name == "logo.svg"
    assert request.header_html is None


@pytest.mark.asyncio
async def test_file_names_are_reduced_to_base_name(work_root):
    with Workspace.acquire(work_root) as ws:
        request, paths = await _decode(files=[("../../index.html", b"x")], workspace=ws)
        assert paths["index.html"].parent == ws.path
    assert request.index_html == b"x"


@pytest.mark.asyncio
async def test_first_occurrence_of_an_option_wins(work_root):
    with Workspace.acquire(work_root) as ws:
        request, _ = await _decode(
            files=[("index.html", b"x")],
            fields=[("dpi", "150"), ("dpi", "300")],
            workspace=ws,
        )
    assert request.options == {"dpi": "150"}


@pytest.mark.asyncio
@pytest.mark.parametrize("content_type", [None, "", "application/json", "multipart/form-data"])
async def test_non_multipart_bodies_are_rejected(work_root, content_type):
    with Workspace.acquire(work_root) as ws:
        with pytest.raises(ValidationError):
            await RequestDecoder().decode(content_type, byte_stream(b"{}"), ws, make_ctx())


@pytest.mark.asyncio
async def test_garbage_body_is_a_validation_error(work_root):
    with Workspace.acquire(work_root) as ws:
        with pytest.raises(ValidationError):
            await RequestDecoder().decode(
                "multipart/form-data; boundary=xyz",
                byte_stream(b"this is not multipart at all"),
                ws,
                make_ctx(),
            )


@pytest.mark.asyncio
async def test_upload_size_limit(work_root):
    decoder = RequestDecoder(max_upload_bytes=1024)
    with Workspace.acquire(work_root) as ws:
        with pytest.raises(PayloadTooLargeError) as exc:
            await _decode(files=[("index.html", b"x" * 2048)], decoder=decoder, workspace=ws)
    assert exc.value.status_code == 413


@pytest.mark.asyncio
async def test_allow_list_rejects_unlisted_options(work_root):
    decoder = RequestDecoder(option_policy=OptionPolicy.from_names(["dpi", "--grayscale"]))
    with Workspace.acquire(work_root) as ws:
        request, _ = await _decode(
            files=[("index.html", b"x")], fields=[("dpi", "96"), ("grayscale", "")], decoder=decoder, workspace=ws
        )
        assert request.options == {"dpi": "96", "grayscale": ""}

        with pytest.raises(ValidationError) as exc:
            await _decode(files=[("index.html", b"x")], fields=[("allow", "/etc")], decoder=decoder, workspace=ws)
    assert exc.value.kind == "option_not_allowed"
    assert "allow" in str(exc.value)


@pytest.mark.asyncio
async def test_deny_list_rejects_listed_options(work_root):
    decoder = RequestDecoder(option_policy=OptionPolicy.from_names(denied=["cache-dir"]))
    with Workspace.acquire(work_root) as ws:
        with pytest.raises(ValidationError):
            await _decode(
                files=[("index.html", b"x")], fields=[("cache-dir", "/tmp")], decoder=decoder, workspace=ws
            )


@pytest.mark.asyncio
async def test_upload_limit_stops_reading_the_body_early(work_root):
    content_type, body = encode_multipart(files=[("index.html", b"x" * (8 * 1024 * 1024))])
    consumed = 0

    async def counting_stream():
        nonlocal consumed
        async for chunk in byte_stream(body, size=64 * 1024):
            consumed += len(chunk)
            yield chunk

    decoder = RequestDecoder(max_upload_bytes=1024)
    with Workspace.acquire(work_root) as ws:
        with pytest.raises(PayloadTooLargeError):
            await decoder.decode(content_type, counting_stream(), ws, make_ctx())
        assert list(ws.path.iterdir()) == []
    assert consumed <= 64 * 1024


@pytest.mark.asyncio
async def test_empty_header_is_treated_as_absent(work_root):
    with Workspace.acquire(work_root) as ws:
        request, paths = await _decode(files=[("index.html", b"x"), ("header.html", b"")], workspace=ws)
    assert request.header_html is None
    assert "header.html" in paths
