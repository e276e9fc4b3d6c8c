"""
Kubernetes label syntax validation.

Keys are qualified names: an optional DNS-1123 subdomain prefix and a name,
separated by "/". Values are empty or follow the same rule as the name part.

    app.kubernetes.io/name=web   → valid
    -bad=x                       → invalid (name must start alphanumeric)
    team=                        → valid (empty value)

Invalid pairs are dropped, never repaired.
"""

import logging
import re
from typing import Dict, Mapping

logger = logging.getLogger(__name__)

QUALIFIED_NAME_MAX_LENGTH = 63
LABEL_VALUE_MAX_LENGTH = 63
DNS1123_SUBDOMAIN_MAX_LENGTH = 253
DNS1123_LABEL_MAX_LENGTH = 63

_NAME_RE = re.compile(r"[A-Za-z0-9](?:[-A-Za-z0-9_.]*[A-Za-z0-9])?")
_DNS1123_LABEL_RE = re.compile(r"[a-z0-9](?:[-a-z0-9]*[a-z0-9])?")


def is_dns1123_subdomain(value: str) -> bool:
    if not value or len(value) > DNS1123_SUBDOMAIN_MAX_LENGTH:
        return False
    return all(
        len(segment) <= DNS1123_LABEL_MAX_LENGTH and _DNS1123_LABEL_RE.fullmatch(segment)
        for segment in value.split(".")
    )


def _is_name(value: str, max_length: int) -> bool:
    return 0 < len(value) <= max_length and _NAME_RE.fullmatch(value) is not None


def is_valid_label_key(key) -> bool:
    """Qualified name: [prefix/]name with a DNS-1123 subdomain prefix."""
    if not isinstance(key, str):
        return False

    parts = key.split("/")
    if len(parts) == 1:
        return _is_name(key, QUALIFIED_NAME_MAX_LENGTH)
    if len(parts) != 2:
        return False

    prefix, name = parts
    return is_dns1123_subdomain(prefix) and _is_name(name, QUALIFIED_NAME_MAX_LENGTH)


def is_valid_label_value(value) -> bool:
    """Empty, or up to 63 characters beginning and ending alphanumeric."""
    if not isinstance(value, str):
        return False
    if value == "":
        return True
    return _is_name(value, LABEL_VALUE_MAX_LENGTH)


def validate(key, value) -> bool:
    """True if the (key, value) pair may be set as a Kubernetes label."""
    return is_valid_label_key(key) and is_valid_label_value(value)


def filter_labels(labels: Mapping[str, str]) -> Dict[str, str]:
    """Return the subset of labels that pass validation. Never raises for bad pairs."""
    valid = {}
    for key, value in labels.items():
        if validate(key, value):
            valid[key] = value
        else:
            logger.debug(f"Dropping invalid label {key!r}={value!r}")
    return valid
