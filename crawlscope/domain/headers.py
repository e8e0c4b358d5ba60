"""Case-insensitive access to list-valued header multimaps."""

from __future__ import annotations

from typing import Iterable, Mapping, Sequence, Union

HeaderValue = Union[str, Sequence[str], None]
HeaderMap = Mapping[str, HeaderValue]


def header_values(headers: HeaderMap | None, name: str) -> list[str]:
    if not headers:
        return []
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() != wanted:
            continue
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value if v is not None]
    return []


def first_header(headers: HeaderMap | None, name: str) -> str | None:
    """Return the effective (first) value of a header, or None when absent or empty."""
    for value in header_values(headers, name):
        if value.strip():
            return value
    return None


def has_header(headers: HeaderMap | None, name: str) -> bool:
    return first_header(headers, name) is not None


def has_any_header(headers: HeaderMap | None, names: Iterable[str]) -> bool:
    return any(has_header(headers, name) for name in names)


def normalize_headers(headers: HeaderMap | None) -> dict[str, list[str]]:
    """Copy a header map into ``{name: [values...]}`` form for storage."""
    if not headers:
        return {}
    normalized: dict[str, list[str]] = {}
    for key, value in headers.items():
        if value is None:
            continue
        values = [value] if isinstance(value, str) else [str(v) for v in value if v is not None]
        normalized.setdefault(str(key), []).extend(values)
    return normalized
