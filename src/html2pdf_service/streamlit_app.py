import os

import requests
import streamlit as st

API_BASE = os.getenv("HTML2PDF_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")
REQUEST_TIMEOUT = float(os.getenv("HTML2PDF_UI_TIMEOUT", "300"))


def _parse_options(text: str) -> dict[str, str]:
    """Parse one ``name=value`` (or bare ``name``) renderer option per line."""
    options: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        name, _, value = line.partition("=")
        name = name.strip().lstrip("-")
        if name:
            options[name] = value.strip()
    return options


def _render_pdf(
    index_html: bytes,
    header_html: bytes | None = None,
    footer_html: bytes | None = None,
    options: dict[str, str] | None = None,
) -> bytes | None:
    files = [("index.html", ("index.html", index_html, "text/html"))]
    if header_html:
        files.append(("header.html", ("header.html", header_html, "text/html")))
    if footer_html:
        files.append(("footer.html", ("footer.html", footer_html, "text/html")))
    try:
        resp = requests.post(f"{API_BASE}/pdf", files=files, data=options or {}, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        st.session_state["error"] = f"Failed to connect to API: {e}"
        return None
    if resp.status_code != 200:
        detail = resp.text
        try:
            detail = resp.json().get("detail", {}).get("message", detail)
        except (ValueError, AttributeError):
            pass
        st.session_state["error"] = f"Conversion failed: {resp.status_code} {detail}"
        return None
    return resp.content


def _reset_state():
    for key in ["pdf", "error"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def main() -> None:
    st.set_page_config(page_title="HTML to PDF", page_icon="📄", layout="centered")
    st.title("📄 HTML to PDF")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    key = st.session_state["upload_key"]
    index = st.file_uploader("index.html (required)", type=["html", "htm"], key=f"index-{key}")
    header = st.file_uploader("header.html", type=["html", "htm"], key=f"header-{key}")
    footer = st.file_uploader("footer.html", type=["html", "htm"], key=f"footer-{key}")
    options_text = st.text_area(
        "Renderer options, one per line",
        placeholder="page-size=A4\ngrayscale",
        key=f"options-{key}",
    )

    if index and st.button("Convert", type="primary"):
        st.session_state.pop("error", None)
        with st.spinner("Rendering PDF..."):
            pdf = _render_pdf(
                index.getvalue(),
                header.getvalue() if header else None,
                footer.getvalue() if footer else None,
                _parse_options(options_text),
            )
        if pdf is not None:
            st.session_state["pdf"] = pdf

    if "pdf" in st.session_state:
        st.success(f"Conversion complete ({len(st.session_state['pdf'])} bytes)")
        st.download_button(
            label="Download PDF",
            data=st.session_state["pdf"],
            file_name="output.pdf",
            mime="application/pdf",
        )

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
