"""
Content-Disposition policy.

decide() maps a blob's content type to the header S3 should serve it with:
images render inline, everything else downloads as an attachment, and both
carry the original filename. The filename is emitted as an RFC 7230
quoted-string, so quotes and backslashes are escaped and control characters
are replaced to keep the value on one header line. Names outside ASCII get an
ASCII fallback plus an RFC 5987 filename* parameter.
"""

import re
import unicodedata
from typing import Optional, Tuple
from urllib.parse import quote, unquote

from .models import Disposition, DispositionDecision

IMAGE_PREFIX = "image/"
CONTROL_REPLACEMENT = "-"

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_TOKEN = r"[!#$%&'*+.^_`|~0-9A-Za-z-]+"
_PARAM_RE = re.compile(r';\s*(' + _TOKEN + r')\s*=\s*("(?:[^"\\]|\\.)*"|[^;]*)')
_QUOTED_PAIR_RE = re.compile(r"\\(.)", re.DOTALL)


def disposition_for(content_type: Optional[str]) -> Disposition:
    if content_type and content_type.startswith(IMAGE_PREFIX):
        return Disposition.INLINE
    return Disposition.ATTACHMENT


def quote_filename(name: str) -> str:
    cleaned = _CONTROL_RE.sub(CONTROL_REPLACEMENT, name)
    escaped = cleaned.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def ascii_fallback(name: str) -> str:
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.encode("ascii", errors="replace").decode("ascii")


def build_header(disposition: Disposition, display_name: str) -> str:
    name = display_name or ""
    if name.isascii():
        return f"{disposition.value}; filename={quote_filename(name)}"
    return (
        f"{disposition.value}; filename={quote_filename(ascii_fallback(name))}; "
        f"filename*=UTF-8''{quote(name, safe='')}"
    )


def decide(content_type: Optional[str], display_name: str) -> DispositionDecision:
    disposition = disposition_for(content_type)
    return DispositionDecision(disposition=disposition, header_value=build_header(disposition, display_name))


# -----------------------------
# Parsing
# -----------------------------

def _unquote_value(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] == '"':
        return _QUOTED_PAIR_RE.sub(r"\1", raw[1:-1])
    return raw


def _decode_ext_value(raw: str) -> Optional[str]:
    parts = raw.strip().split("'", 2)
    if len(parts) != 3:
        return None
    charset, _lang, encoded = parts
    try:
        return unquote(encoded, encoding=charset or "utf-8", errors="strict")
    except (LookupError, UnicodeDecodeError):
        return None


def parse_content_disposition(value: str) -> Tuple[str, Optional[str]]:
    """
    Split a Content-Disposition value into (type, filename).

    filename* wins over filename when both are present and decodable.
    """
    head, _, _ = value.partition(";")
    disposition = head.strip().lower()
    filename = None
    extended = None
    for m in _PARAM_RE.finditer(value[len(head):]):
        name = m.group(1).lower()
        if name == "filename":
            filename = _unquote_value(m.group(2))
        elif name == "filename*":
            extended = _decode_ext_value(m.group(2))
    return disposition, extended if extended is not None else filename
