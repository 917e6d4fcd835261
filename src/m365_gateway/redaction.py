import logging
from typing import Any

logger = logging.getLogger(__name__)

REDACTED = "REDACTED"
REDACTED_MAPPING = "{REDACTED}"
CIRCULAR_REFERENCE = "[Circular Reference]"

SENSITIVE_KEYS = frozenset(
    key.casefold()
    for key in (
        "user",
        "email",
        "mail",
        "address",
        "emailAddress",
        "password",
        "token",
        "accessToken",
        "refreshToken",
        "content",
        "body",
        "contentBytes",
    )
)


def _is_sensitive(key: Any) -> bool:
    return isinstance(key, str) and key.casefold() in SENSITIVE_KEYS


def _placeholder(value: Any) -> Any:
    """Replacement for the value of a sensitive key."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"[{len(value)} items]"
    if isinstance(value, dict):
        return REDACTED_MAPPING
    if isinstance(value, str):
        return REDACTED
    # Numbers, booleans and None carry no payload worth hiding
    return value


def _is_placeholder(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    if value in (REDACTED, REDACTED_MAPPING, CIRCULAR_REFERENCE):
        return True
    return value.startswith("[") and value.endswith(" items]")


def _walk(value: Any, ancestors: set[int]) -> Any:
    if isinstance(value, dict):
        if id(value) in ancestors:
            return CIRCULAR_REFERENCE
        ancestors.add(id(value))
        try:
            result = {}
            for key, item in value.items():
                if _is_sensitive(key) and not _is_placeholder(item):
                    result[key] = _placeholder(item)
                else:
                    result[key] = _walk(item, ancestors)
            return result
        finally:
            ancestors.discard(id(value))

    if isinstance(value, (list, tuple)):
        if id(value) in ancestors:
            return CIRCULAR_REFERENCE
        ancestors.add(id(value))
        try:
            return [_walk(item, ancestors) for item in value]
        finally:
            ancestors.discard(id(value))

    return value


def redact_sensitive_data(data: Any) -> Any:
    """Return a redacted copy of ``data`` suitable for logging.

    Values of keys on the denylist are replaced (strings by ``REDACTED``,
    sequences by ``[N items]``, mappings by ``{REDACTED}``); other mappings
    and sequences are walked recursively. Cycles are replaced by
    ``[Circular Reference]``. The input is never modified.

    Redaction fails open: if the walk raises, ``data`` is returned as is so
    that logging never blocks the caller.
    """
    try:
        return _walk(data, set())
    except Exception as e:
        logger.warning(f"Redaction failed, logging unredacted data: {e}")
        return data
