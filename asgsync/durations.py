from __future__ import annotations

import re

# <digits><unit?> components separated by a unit or a single space, e.g. "5m 30s", "1m10s", "600".
TIME_RE = re.compile(r"[0-9]+(?:(?:[smhdwMy] ?| )[0-9]+)*[smhdwMy]?")


def validate_time(value: str) -> None:
    if not TIME_RE.fullmatch(value):
        raise ValueError(f"Invalid time string: {value!r}")


def parse_time(value: str) -> str:
    """Validate a duration string and return it unchanged.

    NGINX accepts the same syntax, so the value is passed through as-is.
    """
    validate_time(value)
    return value


def is_valid_time(value: str) -> bool:
    # Empty means "use the default" in the config file.
    if value == "":
        return True
    try:
        validate_time(value)
    except ValueError:
        return False
    return True
