"""Best-effort parsers for the two fetched sections of a message.

Neither function raises: a malformed section degrades to defaults so that a
corrupt body never blocks ingestion of the header metadata.
"""

from __future__ import annotations

import email.parser
import email.policy
import email.utils
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from email.message import EmailMessage
from html.parser import HTMLParser
from typing import TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")

_TRAILING_HTML_CLOSE = re.compile(r"</html\s*>\s*$", re.IGNORECASE)


@dataclass
class HeaderFields:
    """Envelope fields extracted from a ``HEADER.FIELDS`` section."""

    from_: list[str] = field(default_factory=list)
    to: list[str] = field(default_factory=list)
    subject: str = ""
    date: str = ""


# ----------------------------------------------------------------------
# Headers
# ----------------------------------------------------------------------


def parse_header_block(raw: bytes) -> HeaderFields:
    """Parse raw header bytes into :class:`HeaderFields`.

    Absent headers default to ``[]`` / ``""``.  Each field is extracted
    independently, so one malformed header only loses that field.
    """
    try:
        headers = email.parser.BytesHeaderParser(policy=email.policy.default).parsebytes(raw)
    except Exception:
        logger.warning("header_block_unparseable", size=len(raw or b""), exc_info=True)
        return HeaderFields()

    return HeaderFields(
        from_=_safe(lambda: _addresses(headers, "From"), []),
        to=_safe(lambda: _addresses(headers, "To"), []),
        subject=_safe(lambda: str(headers.get("Subject", "")), ""),
        date=_safe(lambda: _raw_value(headers, "Date"), ""),
    )


def _addresses(headers: EmailMessage, name: str) -> list[str]:
    """Every address of every *name* header, in order, duplicates kept."""
    values = [str(v) for v in headers.get_all(name, [])]
    if not values:
        return []
    return [addr for _, addr in email.utils.getaddresses(values) if addr]


def _raw_value(headers: EmailMessage, name: str) -> str:
    # raw_items() bypasses the policy so Date keeps its original spelling.
    for key, value in headers.raw_items():
        if key.lower() == name.lower():
            return value.replace("\r", "").replace("\n", "").strip()
    return ""


def _safe(fn: Callable[[], T], default: T) -> T:
    try:
        return fn()
    except Exception:
        logger.warning("header_field_unparseable", exc_info=True)
        return default


# ----------------------------------------------------------------------
# Body
# ----------------------------------------------------------------------


class _BodyLocator(HTMLParser):
    """Record where the first ``<body>`` element's content starts and ends."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.start: tuple[int, int] | None = None
        self.end: tuple[int, int] | None = None

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == "body" and self.start is None:
            line, col = self.getpos()
            self.start = (line, col + len(self.get_starttag_text() or ""))

    def handle_endtag(self, tag: str) -> None:
        if tag == "body" and self.start is not None and self.end is None:
            self.end = self.getpos()


def _offset(line_starts: list[int], pos: tuple[int, int]) -> int:
    line, col = pos
    return line_starts[line - 1] + col


def parse_body_block(raw: bytes) -> str:
    """Return the inner markup of the ``<body>`` element in *raw*.

    Falls back to the decoded text when no body element is found, and to
    ``""`` if even decoding fails.
    """
    try:
        text = raw.decode("utf-8", errors="replace")
    except Exception:
        logger.warning("body_block_undecodable", exc_info=True)
        return ""

    try:
        locator = _BodyLocator()
        locator.feed(text)
        locator.close()
    except Exception:
        logger.warning("body_block_unparseable", size=len(raw), exc_info=True)
        return text

    if locator.start is None:
        return text

    # HTMLParser positions are (1-based line, column) with "\n" line breaks.
    line_starts = [0] + [m.end() for m in re.finditer("\n", text)]
    start = _offset(line_starts, locator.start)
    if locator.end is not None:
        inner = text[start : _offset(line_starts, locator.end)]
    else:
        inner = _TRAILING_HTML_CLOSE.sub("", text[start:])
    return inner.strip()
