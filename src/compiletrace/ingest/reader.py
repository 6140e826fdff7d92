from typing import Iterable, Iterator, List, Optional, Tuple

LogRecord = Tuple[int, str, Optional[str]]


def iter_log_records(lines: Iterable[str]) -> Iterator[LogRecord]:
    """
    Group raw log lines into records.

    A record is one envelope line followed by zero or more tab-indented
    payload lines. Yields ``(line_number, envelope_line, payload)`` where
    `payload` is the joined continuation text, or None. Blank lines are
    skipped; line numbers are 1-based.
    """
    head: Optional[Tuple[int, str]] = None
    payload: List[str] = []

    for number, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        if line.startswith("\t") and head is not None:
            payload.append(line[1:])
            continue
        if head is not None:
            yield head[0], head[1], "\n".join(payload) if payload else None
            head, payload = None, []
        if not line.strip():
            continue
        head = (number, line)

    if head is not None:
        yield head[0], head[1], "\n".join(payload) if payload else None
