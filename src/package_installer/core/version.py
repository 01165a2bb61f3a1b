"""
Version comparison and package identifier grammars.

Versions are compared segment by segment after canonicalization, with
pre-release qualifiers sorting below the numeric release they precede:

    1.0.0 dev 1 < 1.0.0 alpha 1 < 1.0.0 beta 1 < 1.0.0 rc 1 < 1.0.0 < 1.0.0 pl 1
"""

import operator
import re

from package_installer.core.errors import InvalidVersionFormat

PACKAGE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+(\.[a-zA-Z0-9_-]+)+$")
VERSION_PATTERN = re.compile(
    r"^([0-9]+)\.([0-9]+)\.([0-9]+)( (a|alpha|b|beta|d|dev|rc|pl) ([0-9]+))?$", re.IGNORECASE
)

# Rank of a numeric segment; qualifiers rank around it.
NUMERIC_RANK = 4
QUALIFIER_RANKS = {
    "dev": 0,
    "d": 0,
    "alpha": 1,
    "a": 1,
    "beta": 2,
    "b": 2,
    "rc": 3,
    "pl": 5,
    "p": 5,
}
# Marks the end of a version: above any qualifier below a release, below any number.
_END = (NUMERIC_RANK, -1)

_OPERATORS = {
    "<": operator.lt,
    "lt": operator.lt,
    "<=": operator.le,
    "le": operator.le,
    ">": operator.gt,
    "gt": operator.gt,
    ">=": operator.ge,
    "ge": operator.ge,
    "==": operator.eq,
    "=": operator.eq,
    "eq": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "ne": operator.ne,
}
_CONSTRAINT_PATTERN = re.compile(r"^\s*(>=|<=|==|!=|<>|>|<|=)\s*(\S.*?)\s*$")


def is_valid_package_name(name: str) -> bool:
    """Check a package identifier like 'com.example.plugin'."""
    return bool(name) and PACKAGE_NAME_PATTERN.match(name) is not None


def is_valid_version(version: str) -> bool:
    """Check a manifest version like '1.2.0' or '2.0.0 Beta 3'."""
    return bool(version) and VERSION_PATTERN.match(version) is not None


def get_abbreviation(name: str) -> str:
    """'com.example.blog' -> 'blog'."""
    return name.rsplit(".", 1)[-1]


def _canonicalize(version: str) -> list[str]:
    normalized = version.replace(" ", "").lower()
    normalized = re.sub(r"[-_+]", ".", normalized)
    normalized = re.sub(r"(?<=[0-9])(?=[a-z])|(?<=[a-z])(?=[0-9])", ".", normalized)
    return [segment for segment in normalized.split(".") if segment]


def version_key(version: str) -> tuple:
    """
    Build a sort key for a version string.

    Raises:
        InvalidVersionFormat: If the version is empty or has an unknown segment.
    """
    if not isinstance(version, str) or not version.strip():
        raise InvalidVersionFormat(str(version))

    key = []
    for segment in _canonicalize(version):
        if segment.isdigit():
            key.append((NUMERIC_RANK, int(segment)))
        elif segment in QUALIFIER_RANKS:
            key.append((QUALIFIER_RANKS[segment], 0))
        else:
            raise InvalidVersionFormat(version, segment)

    if not key:
        raise InvalidVersionFormat(version)

    key.append(_END)
    return tuple(key)


def compare_versions(a: str, b: str, op: str | None = None):
    """
    Compare two versions.

    Without ``op`` returns -1, 0 or 1. With ``op`` (one of <, <=, >, >=, ==,
    !=, or their lt/le/gt/ge/eq/ne spellings) returns whether ``a op b``.
    """
    key_a, key_b = version_key(a), version_key(b)
    result = (key_a > key_b) - (key_a < key_b)
    if op is None:
        return result

    try:
        return _OPERATORS[op](result, 0)
    except KeyError:
        raise ValueError(f"Unknown comparison operator: {op!r}") from None


def satisfies_range(version: str, expression: str) -> bool:
    """
    Check an installed version against an update block's 'fromversion'.

    Supported forms:
        1.0.*                 wildcard, case-insensitive
        >=1.0.0, <2.0.0       all comma-separated constraints must hold
        1.0.0                 exact match
    """
    expression = expression.strip()
    if not expression:
        return False

    if "*" in expression:
        pattern = re.escape(expression).replace(r"\*", ".*")
        return re.fullmatch(pattern, version, re.IGNORECASE) is not None

    if expression[0] in "<>=!":
        for part in expression.split(","):
            match = _CONSTRAINT_PATTERN.match(part)
            if not match:
                raise InvalidVersionFormat(expression, part.strip())
            if not compare_versions(version, match.group(2), match.group(1)):
                return False
        return True

    return compare_versions(version, expression) == 0
