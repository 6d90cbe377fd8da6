"""Restricted reader for the ```yaml block in PR descriptions.

Only ``field: value`` lines at the start of a line are understood. Values are
either a scalar (optionally quoted) or a single-line bracketed list of
primitives. Nested brackets, escaped quotes, apostrophes inside single-quoted
items, ``#`` inside quoted strings, and multi-line lists are not supported.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import math
import re


_YAML_BLOCK_PATTERN = re.compile(r"```yaml\s*\n(.*?)\n\s*```", re.DOTALL)
_TRAILING_COMMENT_PATTERN = re.compile(r"#.*$")
_SINGLE_QUOTED_PATTERN = re.compile(r"'([^']*)'")
_QUOTES = ("\"", "'")


@dataclass(frozen=True)
class Absent:
    pass


@dataclass(frozen=True)
class Scalar:
    value: str


@dataclass(frozen=True)
class ArrayOf:
    values: tuple[str, ...]


@dataclass(frozen=True)
class Malformed:
    raw: str


YamlFieldValue = Absent | Scalar | ArrayOf | Malformed
ABSENT = Absent()


def extract_yaml_block(text: str | None) -> str | None:
    if not text:
        return None
    match = _YAML_BLOCK_PATTERN.search(text)
    if match is None:
        return None
    return match.group(1)


def parse_field(yaml_fragment: str | None, field_name: str) -> YamlFieldValue:
    if not yaml_fragment:
        return ABSENT
    pattern = re.compile(rf"^{re.escape(field_name)}:[ \t]*(.+)$", re.MULTILINE)
    match = pattern.search(yaml_fragment)
    if match is None:
        return ABSENT

    raw_value = _TRAILING_COMMENT_PATTERN.sub("", match.group(1).strip()).strip()
    if not raw_value:
        return ABSENT

    if raw_value.startswith("[") and raw_value.endswith("]"):
        return parse_array_value(raw_value)

    value = _strip_matching_quotes(raw_value)
    if not value:
        return ABSENT
    return Scalar(value)


def parse_array_value(array_text: str) -> ArrayOf | Malformed:
    normalized = _SINGLE_QUOTED_PATTERN.sub(r'"\1"', array_text)
    try:
        parsed = json.loads(normalized, parse_constant=_reject_constant)
    except ValueError:
        return Malformed(array_text)
    if not isinstance(parsed, list):
        return Malformed(array_text)

    values: list[str] = []
    for item in parsed:
        if isinstance(item, list | dict):
            return Malformed(array_text)
        if isinstance(item, float) and not math.isfinite(item):
            return Malformed(array_text)
        value = _stringify(item).strip()
        if value:
            values.append(value)
    return ArrayOf(tuple(values))


def is_present(value: YamlFieldValue) -> bool:
    return isinstance(value, Scalar | ArrayOf)


def _strip_matching_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        return value[1:-1].strip()
    return value


def _reject_constant(token: str) -> object:
    raise ValueError(f"non-finite number {token} is not allowed")


def _stringify(item: object) -> str:
    if item is None:
        return "null"
    if isinstance(item, bool):
        return "true" if item else "false"
    # Integral floats render without a fraction: 2.0 -> "2".
    if isinstance(item, float) and item.is_integer() and abs(item) < 1e21:
        return str(int(item))
    return str(item)
