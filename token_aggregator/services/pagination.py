"""
Cursor pagination over an ordered token list.

A cursor is the base64 encoding of "<offset>:<issued_ms>". It is opaque to
clients and only meaningful against the same ordering it was issued for.
"""

import base64
import binascii
from typing import List, Optional

from ..api.schemas import MergedTokenRecord, TokenPage, now_ms


class InvalidCursorError(ValueError):
    """Raised when a cursor cannot be decoded into an offset."""
    pass


def encode_cursor(offset: int) -> str:
    """Encode a start offset into an opaque cursor."""
    return base64.urlsafe_b64encode(f"{offset}:{now_ms()}".encode()).decode()


def decode_cursor(cursor: str) -> int:
    """Decode a cursor back into its start offset."""
    try:
        decoded = base64.urlsafe_b64decode(cursor.encode()).decode()
        offset = int(decoded.split(':', 1)[0])
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidCursorError(f"Invalid cursor: {cursor!r}")
    if offset < 0:
        raise InvalidCursorError(f"Invalid cursor offset: {offset}")
    return offset


def paginate(tokens: List[MergedTokenRecord], limit: int = 30, cursor: Optional[str] = None) -> TokenPage:
    """Slice one page out of tokens; next cursor is None on the last page."""
    start = decode_cursor(cursor) if cursor else 0
    end = start + limit

    next_cursor = encode_cursor(end) if end < len(tokens) else None
    return TokenPage(tokens=tokens[start:end], nextCursor=next_cursor)
