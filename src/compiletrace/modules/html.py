"""Small HTML helpers shared by report modules."""

from html import escape
from typing import Iterable, Optional, Sequence

BASE_CSS = """
body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif; margin: 20px; }
table { border-collapse: collapse; margin-bottom: 20px; }
th, td { border: 1px solid #ddd; padding: 6px 8px; text-align: left; vertical-align: top; }
th { background-color: #f5f5f5; }
pre { background: #f8f8f8; padding: 10px; overflow-x: auto; }
.status-ok { color: #2e7d32; }
.status-error { color: #c62828; }
.status-empty { color: #757575; }
.status-break { color: #ef6c00; }
.status-missing { color: #9e9e9e; }
"""


def page(title: str, body: str, css: str = "") -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{escape(title)}</title>\n<style>{BASE_CSS}{css}</style>\n"
        f"</head>\n<body>\n{body}\n</body>\n</html>\n"
    )


def numbered_pre(text: str) -> str:
    """Line-numbered listing; line N is addressable as ``#L<N>``."""
    rows = []
    for number, line in enumerate(text.splitlines(), start=1):
        rows.append(
            f'<span id="L{number}"><a href="#L{number}">{number:>5}</a>  {escape(line)}</span>'
        )
    return "<pre>" + "\n".join(rows) + "</pre>"


def table(headers: Sequence[str], rows: Iterable[Sequence[str]], escape_cells: bool = True, attrs: str = "") -> str:
    head = "".join(f"<th>{escape(h)}</th>" for h in headers)
    body = []
    for row in rows:
        cells = "".join(f"<td>{escape(c) if escape_cells else c}</td>" for c in row)
        body.append(f"<tr>{cells}</tr>")
    return f"<table{(' ' + attrs) if attrs else ''}><thead><tr>{head}</tr></thead><tbody>{''.join(body)}</tbody></table>"


def link(url: str, text: Optional[str] = None) -> str:
    return f'<a href="{escape(url, quote=True)}">{escape(text if text is not None else url)}</a>'


def text_value(value) -> str:
    return "" if value is None else str(value)
