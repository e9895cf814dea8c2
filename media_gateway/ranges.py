"""Parsing of single-range ``Range`` request headers (RFC 7233)."""

from __future__ import annotations

from dataclasses import dataclass


class MalformedRangeError(ValueError):
    """The header is not a ``bytes=`` range we understand."""

    def __init__(self, header: str) -> None:
        super().__init__(f"malformed Range header: {header!r}")
        self.header = header


class UnsatisfiableRangeError(ValueError):
    """The range is well-formed but selects no bytes of the object."""

    def __init__(self, header: str, size: int) -> None:
        super().__init__(f"range {header!r} not satisfiable for size {size}")
        self.header = header
        self.size = size


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"

    def as_header(self) -> str:
        return f"bytes={self.start}-{self.end}"


def _parse_position(token: str, header: str) -> int | None:
    token = token.strip()
    if not token:
        return None
    if not (token.isascii() and token.isdigit()):
        raise MalformedRangeError(header)
    return int(token)


def parse_range_header(header: str | None, size: int) -> ByteRange | None:
    """Resolve a ``Range`` header against an object of ``size`` bytes.

    Returns ``None`` when no range was requested. Only the first range of a
    multi-range header is honoured. A last-byte position past the end of the
    object is clamped to ``size - 1``.

    Raises:
        MalformedRangeError: The header does not use single-range byte syntax.
        UnsatisfiableRangeError: The range starts past the end of the object,
            ends before it starts, or asks for an empty suffix.
    """
    if header is None or not header.strip():
        return None

    unit, sep, spec = header.partition("=")
    if not sep or unit.strip().lower() != "bytes":
        raise MalformedRangeError(header)

    first = spec.split(",", 1)[0]
    if "-" not in first:
        raise MalformedRangeError(header)
    start_str, end_str = first.split("-", 1)
    start = _parse_position(start_str, header)
    end = _parse_position(end_str, header)

    if start is None:
        if end is None:
            raise MalformedRangeError(header)
        # suffix form: the last ``end`` bytes
        if end == 0 or size == 0:
            raise UnsatisfiableRangeError(header, size)
        return ByteRange(start=max(size - end, 0), end=size - 1)

    if start > size - 1:
        raise UnsatisfiableRangeError(header, size)
    if end is None:
        end = size - 1
    elif end < start:
        raise UnsatisfiableRangeError(header, size)
    return ByteRange(start=start, end=min(end, size - 1))
