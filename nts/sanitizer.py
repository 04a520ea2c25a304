"""Removal of characters that cannot appear in WordprocessingML text."""

from __future__ import annotations

import re
from typing import Any

# XML 1.0 Char production, minus U+FFFD..U+FFFF which Word refuses as well.
_INVALID_XML_CHARS_RE = re.compile(
    r"[^\x09\x0A\x0D\x20-\uD7FF\uE000-\uFFFC\U00010000-\U0010FFFF]"
)


def strip_invalid_xml_chars(text: Any) -> Any:
    """Return *text* with every character illegal in XML 1.0 removed.

    Non-string values are returned untouched.  The operation is idempotent
    and preserves the order of all remaining characters.
    """
    if not isinstance(text, str):
        return text
    return _INVALID_XML_CHARS_RE.sub("", text)
