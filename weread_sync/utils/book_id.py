"""
WeRead book id obfuscation.

WeRead web reader links do not use the raw book id; they use a short
string derived from it with two MD5 passes. The transform is one-way.
"""

import hashlib
import re
from typing import List, Tuple

WEREAD_READER_URL = "https://weread.qq.com/web/reader/"

_NUMERIC_ID = re.compile(r"[0-9]*")
_MIN_LENGTH = 20


def _md5(value: str) -> str:
    return hashlib.md5(value.encode("utf-8", "surrogatepass")).hexdigest()


def _utf16_units(value: str) -> List[int]:
    data = value.encode("utf-16-be", "surrogatepass")
    return [int.from_bytes(data[i:i + 2], "big") for i in range(0, len(data), 2)]


def transform_id(book_id: str) -> Tuple[str, List[str]]:
    """
    Split a raw book id into hex chunks.

    Numeric ids are cut into 9-digit groups, each rendered as hex (tag "3").
    Anything else becomes one chunk of UTF-16 code units (tag "4"), so
    characters outside the BMP contribute their surrogate pair.
    """
    if _NUMERIC_ID.fullmatch(book_id):
        chunks = [
            format(int(book_id[i:i + 9]), "x")
            for i in range(0, len(book_id), 9)
        ]
        return "3", chunks

    return "4", ["".join(format(unit, "x") for unit in _utf16_units(book_id))]


def encode_book_id(book_id: str) -> str:
    """
    Compute the obfuscated string id used in WeRead reader links.

    Args:
        book_id: Raw WeRead book id

    Returns:
        Encoded id string
    """
    digest = _md5(book_id)
    tag, chunks = transform_id(book_id)

    result = digest[:3] + tag + "2" + digest[-2:]
    result += "g".join(
        format(len(chunk), "x").zfill(2) + chunk for chunk in chunks
    )

    if len(result) < _MIN_LENGTH:
        result += digest[:_MIN_LENGTH - len(result)]

    return result + _md5(result)[:3]


def book_url(book_id: str) -> str:
    """Build the WeRead web reader link for a book."""
    return f"{WEREAD_READER_URL}{encode_book_id(book_id)}"
