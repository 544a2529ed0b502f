"""
Terminal-safe output for the CLI.

No forced UTF-8: text is printed as-is when the terminal can encode it and
with replacement characters otherwise.
"""

import sys

import typer


def supports_unicode() -> bool:
    try:
        "✅".encode(sys.stdout.encoding or "utf-8")
        return True
    except (UnicodeEncodeError, LookupError):
        return False


_UNICODE_SUPPORT = supports_unicode()


def emoji(unicode_char: str, ascii_fallback: str) -> str:
    """Return ``unicode_char`` if the terminal can show it, else ``ascii_fallback``."""
    return unicode_char if _UNICODE_SUPPORT else ascii_fallback


def _sanitize(text: str, encoding: str) -> str:
    try:
        return text.encode(encoding, errors="replace").decode(encoding, errors="replace")
    except LookupError:
        return text.encode("ascii", errors="replace").decode("ascii")


def safe_print(text: str, end: str = "\n", flush: bool = False, err: bool = False) -> None:
    if err:
        safe_print_err(text, end=end, flush=flush)
        return
    try:
        print(text, end=end, flush=flush)
    except UnicodeEncodeError:
        print(_sanitize(text, sys.stdout.encoding or "utf-8"), end=end, flush=flush)


def safe_print_err(text: str, end: str = "\n", flush: bool = False) -> None:
    try:
        typer.echo(text, err=True, nl=(end == "\n"))
    except UnicodeEncodeError:
        typer.echo(_sanitize(text, sys.stderr.encoding or "utf-8"), err=True, nl=(end == "\n"))
    if flush:
        sys.stderr.flush()
