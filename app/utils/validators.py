import re
from typing import Any, Optional
from urllib.parse import urlparse

VERSION_MAX_LEN = 50
CONTENT_MAX_LEN = 10_000

_VERSION_RE = re.compile(r"^[\w.\- ]+$")


def clean_str(val: Optional[str], max_len: int = 255) -> Optional[str]:
    """
    Collapse whitespace, trim, enforce max length. Returns None if empty after cleaning.
    """
    if val is None:
        return None
    s = re.sub(r"\s+", " ", str(val)).strip()
    if not s:
        return None
    return s[:max_len]


def version_label_errors(val: Any) -> Optional[str]:
    if not isinstance(val, str) or not val.strip():
        return "Version is required"
    s = clean_str(val, max_len=VERSION_MAX_LEN + 1)
    if len(s) > VERSION_MAX_LEN:
        return f"Version must be at most {VERSION_MAX_LEN} characters"
    if not _VERSION_RE.match(s):
        return "Version may only contain letters, digits, spaces, '.', '-' and '_'"
    return None


def content_errors(val: Any) -> Optional[str]:
    # Plan content is an opaque structured document; only its shape is checked
    if val is None or isinstance(val, dict):
        return None
    return "Content must be a JSON object"


def is_http_url(val: Optional[str]) -> bool:
    if not val:
        return False
    try:
        parsed = urlparse(val)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
