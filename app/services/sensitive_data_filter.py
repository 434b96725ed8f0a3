"""
Sensitive-data filter for shared reports.

AUTHENTICATED links see report output as-is. PUBLIC and
PASSWORD_PROTECTED links get a sanitized deep copy:
  - user-like objects (user, executedBy, assignedTo, createdBy, creator)
    lose ``email`` and ``id`` but keep ``name`` (default "User")
  - internal keys (ipAddress, internalId, auditLog, integrationConfig,
    apiKey, apiToken) are dropped at any depth
  - with ``anonymize=True`` every distinct display name becomes
    "User 1", "User 2", … in order of first appearance

The pseudonym map lives in a Pseudonymizer created per call, so names
never leak between two filtering passes. Structural fields drill-down
needs (dimension ids other than user ids, metric labels) are untouched.
"""

import copy
import logging

logger = logging.getLogger(__name__)

AUTHENTICATED = "AUTHENTICATED"
SANITIZED_MODES = frozenset({"PUBLIC", "PASSWORD_PROTECTED"})

USER_KEYS = frozenset({"user", "executedBy", "assignedTo", "createdBy", "creator"})
USER_PRIVATE_KEYS = ("email", "id")
BLOCKED_KEYS = frozenset({
    "ipAddress", "internalId", "auditLog", "integrationConfig", "apiKey", "apiToken",
})
DEFAULT_USER_NAME = "User"


class Pseudonymizer:
    """Stable name → "User N" mapping for one filtering pass."""

    def __init__(self):
        self._names: dict[str, str] = {}

    def __call__(self, name: str) -> str:
        if name not in self._names:
            self._names[name] = f"User {len(self._names) + 1}"
        return self._names[name]


def _sanitize_user(value: dict, pseudonymize) -> dict:
    cleaned = {k: v for k, v in value.items() if k not in USER_PRIVATE_KEYS}
    name = cleaned.get("name") or DEFAULT_USER_NAME
    # the "None" bucket of a report is not a person
    is_none_bucket = value.get("id") is None and name == "None"
    cleaned["name"] = pseudonymize(name) if pseudonymize and not is_none_bucket else name
    return cleaned


def _walk(value, pseudonymize):
    if isinstance(value, list):
        return [_walk(item, pseudonymize) for item in value]
    if not isinstance(value, dict):
        return value

    result = {}
    for key, item in value.items():
        if key in BLOCKED_KEYS:
            continue
        item = _walk(item, pseudonymize)
        if key in USER_KEYS and isinstance(item, dict):
            item = _sanitize_user(item, pseudonymize)
        result[key] = item
    return result


def filter_sensitive_data(data, mode: str, *, anonymize: bool = False):
    """Return ``data`` sanitized for the given share mode (same shape as input)."""
    if mode == AUTHENTICATED:
        return data
    if mode not in SANITIZED_MODES:
        raise ValueError(f"Unknown share mode: {mode}")
    pseudonymize = Pseudonymizer() if anonymize else None
    return _walk(copy.deepcopy(data), pseudonymize)
