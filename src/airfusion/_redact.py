"""Keep vendor credentials out of debug logs.

Connector payloads, request parameters and webhook URLs routinely carry
API tokens. Anything passed to a DEBUG log from ingestion or dispatch goes
through :func:`redact_for_log` or :func:`redact_url` first.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlsplit, urlunsplit

PLACEHOLDER = "<redacted>"
_MAX_DEPTH = 20

# Matched against the whole key and against each of its ``-``/``_`` parts,
# so ``API_KEY`` and ``x-api-key`` match while ``keywords`` does not.
_SECRET_WORDS: frozenset[str] = frozenset(
    {
        "token",
        "key",
        "apikey",
        "password",
        "passwd",
        "secret",
        "signature",
        "authorization",
        "cookie",
    }
)
_KEY_PARTS = re.compile(r"[-_\s.]+")


def is_secret_key(key: Any) -> bool:
    name = str(key).lower()
    if name in _SECRET_WORDS:
        return True
    return any(part in _SECRET_WORDS for part in _KEY_PARTS.split(name))


def _scrub(value: Any, max_string: int, depth: int) -> Any:
    if depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {
            str(k): PLACEHOLDER if is_secret_key(k) else _scrub(v, max_string, depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, Sequence):
        return [_scrub(item, max_string, depth + 1) for item in value]
    return repr(value)


def redact_for_log(value: Any, *, max_string: int = 512) -> Any:
    """Return a copy of *value* with secret fields masked and long strings cut."""
    return _scrub(value, max_string, 0)


def redact_url(url: str) -> str:
    """Mask secret query parameters, e.g. ``?token=abc`` becomes ``?token=<redacted>``."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    masked: list[str] = []
    for pair in parts.query.split("&"):
        name, eq, _ = pair.partition("=")
        masked.append(f"{name}={PLACEHOLDER}" if eq and is_secret_key(name) else pair)
    return urlunsplit(parts._replace(query="&".join(masked)))
