from pathlib import Path
from typing import Mapping, Sequence

from .interfaces import FOOTER_HTML, HEADER_HTML, INDEX_HTML, ConversionRequest

# Lets the renderer load the header/footer files and local assets referenced
# by the primary document, all of which live in the workspace.
LOCAL_FILE_ACCESS = "--enable-local-file-access"
STDOUT_MARKER = "-"

# Number of value tokens following each option whose values must not be logged.
SENSITIVE_OPTIONS = {
    "--cookie": 2,
    "--custom-header": 2,
    "--password": 1,
    "--post": 2,
    "--ssl-key-password": 1,
    "--username": 1,
}


def build_arguments(request: ConversionRequest, paths: Mapping[str, Path]) -> list[str]:
    """Return the renderer command line (without the executable).

    Options come first, then header/footer flags, then the fixed tail:
    local-file-access flag, primary document path, stdout marker. The
    renderer treats the document as positional and wants the output last.
    """
    args: list[str] = []
    for name, value in request.options.items():
        args.append(f"--{name}")
        if value != "":
            args.append(value)

    header = paths.get(HEADER_HTML)
    if header is not None and request.header_html:
        args.extend(["--header-html", str(header)])
    footer = paths.get(FOOTER_HTML)
    if footer is not None and request.footer_html:
        args.extend(["--footer-html", str(footer)])

    args.extend([LOCAL_FILE_ACCESS, str(paths[INDEX_HTML]), STDOUT_MARKER])
    return args


def redact_arguments(argv: Sequence[str]) -> list[str]:
    """Copy of ``argv`` fit for logs, with secret option values masked."""
    out = list(argv)
    i = 0
    while i < len(out) - 1:
        arity = SENSITIVE_OPTIONS.get(out[i], 0)
        if arity:
            for j in range(i + 1, min(i + 1 + arity, len(out))):
                out[j] = "***"
            i += 1 + arity
        else:
            i += 1
    return out
