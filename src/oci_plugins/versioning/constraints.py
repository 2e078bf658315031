"""Semantic version parsing and range constraints for plugin tags.

Plugin tags are parsed leniently: a leading ``v`` is accepted and the
minor and patch components may be omitted (``v1`` and ``1.2`` are valid).
The original tag text is kept so it can be used as the image reference.

Constraint strings follow the range syntax plugins declare in their
contracts::

    >=1.0.0            comparison (=, !=, >, <, >=, <=; => and =< also accepted)
    >= 1.26            whitespace between operator and version is allowed
    >=1.2, <2.0        comma or whitespace joins terms (AND)
    ^1.0.0 || ^2.0.0   ``||`` separates alternatives (OR)
    ~1.2.3             patch-level range (>=1.2.3 <1.3.0)
    ^0.2.3             caret range (>=0.2.3 <0.3.0)
    1.2.x, 1.*, *      wildcards
    1.2 - 1.4.5        hyphen range (>=1.2 <=1.4.5)

A pre-release version only satisfies a term whose own version carries a
pre-release component.

Classes
-------
- PluginVersion   A parsed tag keeping its original text.
- Constraints     A parsed constraint expression.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

import semver

from oci_plugins.errors import InvalidConstraintError, InvalidVersionError

_WILDCARDS: frozenset[str] = frozenset({"x", "X", "*"})

_OPERATORS: dict[str, str] = {
    "": "=",
    "=": "=",
    "!=": "!=",
    ">": ">",
    "<": "<",
    ">=": ">=",
    "=>": ">=",
    "<=": "<=",
    "=<": "<=",
    "~": "~",
    "~>": "~",
    "^": "^",
}

_TERM_RE = re.compile(
    r"(?P<op>!=|>=|=>|<=|=<|~>|>|<|=|~|\^)?\s*"
    r"(?P<ver>v?[0-9xX*]+(?:\.[0-9xX*]+){0,2}(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?)"
)

_HYPHEN_RE = re.compile(r"(?P<low>\S+)\s+-\s+(?P<high>\S+)")

_SEPARATOR_RE = re.compile(r"^[\s,]*$")


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PluginVersion:
    """A semantic version parsed from a registry tag.

    Attributes
    ----------
    original:
        The tag text exactly as published (e.g. ``"v1.2.0"``).
    semver:
        The parsed :class:`semver.Version`.
    """

    original: str
    semver: semver.Version

    @property
    def major(self) -> int:
        return self.semver.major

    @property
    def prerelease(self) -> str | None:
        return self.semver.prerelease

    def __str__(self) -> str:
        return self.original


def parse_version(text: str) -> PluginVersion:
    """Parse *text* into a :class:`PluginVersion`.

    Raises
    ------
    InvalidVersionError
        If *text* is not a semantic version.
    """
    candidate = text.strip()
    if candidate[:1] in ("v", "V"):
        candidate = candidate[1:]
    try:
        parsed = semver.Version.parse(candidate, optional_minor_and_patch=True)
    except (ValueError, TypeError) as exc:
        raise InvalidVersionError(f"invalid semantic version {text!r}: {exc}") from exc
    return PluginVersion(original=text, semver=parsed)


# ---------------------------------------------------------------------------
# Constraint terms
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Bound:
    op: str
    version: semver.Version

    def allows(self, version: semver.Version) -> bool:
        result = version.compare(self.version)
        if self.op == ">":
            return result > 0
        if self.op == ">=":
            return result >= 0
        if self.op == "<":
            return result < 0
        if self.op == "<=":
            return result <= 0
        if self.op == "!=":
            return result != 0
        return result == 0


@dataclass(frozen=True)
class _Term:
    """A single range term expanded into AND-ed bounds.

    *excluded* holds a ``[low, high)`` window the version must fall outside
    of, used by ``!=`` against a wildcard.
    """

    bounds: tuple[_Bound, ...]
    allows_prerelease: bool
    excluded: tuple[semver.Version, semver.Version] | None = None

    def allows(self, version: semver.Version) -> bool:
        if version.prerelease and not self.allows_prerelease:
            return False
        if self.excluded is not None:
            low, high = self.excluded
            if version.compare(low) >= 0 and version.compare(high) < 0:
                return False
        return all(bound.allows(version) for bound in self.bounds)


def _parse_partial(text: str) -> tuple[semver.Version, int, bool]:
    """Return ``(version, precision, wildcard)`` for a possibly partial version.

    *precision* counts the concrete numeric components (0-3).  Missing and
    wildcard components are filled with zero.
    """
    body = text[1:] if text[:1] in ("v", "V") else text
    build = None
    if "+" in body:
        body, build = body.split("+", 1)
    prerelease = None
    if "-" in body:
        body, prerelease = body.split("-", 1)

    numbers: list[int] = []
    wildcard = False
    for part in body.split("."):
        if part in _WILDCARDS:
            wildcard = True
            break
        if not part.isdigit():
            raise InvalidConstraintError(f"invalid version {text!r} in constraint")
        numbers.append(int(part))

    precision = len(numbers)
    numbers.extend([0] * (3 - len(numbers)))
    if wildcard:
        prerelease = None
    version = semver.Version(numbers[0], numbers[1], numbers[2], prerelease, build)
    return version, precision, wildcard


def _next_at(version: semver.Version, precision: int) -> semver.Version:
    """Return the smallest version above every version sharing *precision* components."""
    if precision <= 1:
        return semver.Version(version.major + 1, 0, 0)
    if precision == 2:
        return semver.Version(version.major, version.minor + 1, 0)
    return semver.Version(version.major, version.minor, version.patch + 1)


_NOTHING = semver.Version(0, 0, 0)


def _build_term(op: str, text: str) -> _Term:
    version, precision, wildcard = _parse_partial(text)
    allows_prerelease = bool(version.prerelease)

    if wildcard and op in ("=", "!=", ">", "<="):
        if precision == 0:
            # "*" matches every release; "!= *" and "> *" match nothing.
            if op in ("=", "<="):
                return _Term((), allows_prerelease)
            return _Term((_Bound("<", _NOTHING),), allows_prerelease)
        upper = _next_at(version, precision)
        if op == "=":
            return _Term((_Bound(">=", version), _Bound("<", upper)), allows_prerelease)
        if op == "!=":
            return _Term((), allows_prerelease, excluded=(version, upper))
        if op == ">":
            return _Term((_Bound(">=", upper),), allows_prerelease)
        return _Term((_Bound("<", upper),), allows_prerelease)

    if op == "~":
        upper = _next_at(version, 1 if precision <= 1 else 2)
        return _Term((_Bound(">=", version), _Bound("<", upper)), allows_prerelease)

    if op == "^":
        if version.major > 0 or precision <= 1:
            upper = semver.Version(version.major + 1, 0, 0)
        elif version.minor > 0 or precision == 2:
            upper = semver.Version(0, version.minor + 1, 0)
        else:
            upper = semver.Version(0, 0, version.patch + 1)
        return _Term((_Bound(">=", version), _Bound("<", upper)), allows_prerelease)

    return _Term((_Bound("==" if op == "=" else op, version),), allows_prerelease)


def _parse_group(group: str) -> list[_Term]:
    terms: list[_Term] = []

    hyphen = _HYPHEN_RE.fullmatch(group.strip())
    if hyphen:
        low, _, _ = _parse_partial(hyphen.group("low"))
        high_text = hyphen.group("high")
        high, precision, wildcard = _parse_partial(high_text)
        if wildcard or precision < 3:
            high_bound = _Bound("<", _next_at(high, max(precision, 1)))
        else:
            high_bound = _Bound("<=", high)
        allows_prerelease = bool(low.prerelease or high.prerelease)
        return [_Term((_Bound(">=", low), high_bound), allows_prerelease)]

    position = 0
    for match in _TERM_RE.finditer(group):
        if not _SEPARATOR_RE.match(group[position:match.start()]):
            raise InvalidConstraintError(f"invalid constraint {group.strip()!r}")
        op = _OPERATORS[match.group("op") or ""]
        terms.append(_build_term(op, match.group("ver")))
        position = match.end()

    if not _SEPARATOR_RE.match(group[position:]) or not terms:
        raise InvalidConstraintError(f"invalid constraint {group.strip()!r}")
    return terms


# ---------------------------------------------------------------------------
# Public constraint type
# ---------------------------------------------------------------------------


class Constraints:
    """A parsed constraint expression such as ``">=1.2, <2.0 || ^3"``.

    Parameters
    ----------
    text:
        The constraint string as declared in a contract.

    Raises
    ------
    InvalidConstraintError
        If *text* is empty or malformed.
    """

    def __init__(self, text: str) -> None:
        if not text or not text.strip():
            raise InvalidConstraintError("constraint must not be empty")
        self._text = text
        self._groups: list[list[_Term]] = [
            _parse_group(group) for group in text.split("||")
        ]

    def check(self, version: PluginVersion | semver.Version) -> bool:
        """Return True if *version* satisfies any alternative of the expression."""
        target = version.semver if isinstance(version, PluginVersion) else version
        return any(
            all(term.allows(target) for term in group) for group in self._groups
        )

    def __str__(self) -> str:
        return self._text

    def __repr__(self) -> str:
        return f"Constraints({self._text!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Constraints):
            return NotImplemented
        return self._text == other._text

    def __hash__(self) -> int:
        return hash(self._text)


__all__ = [
    "Constraints",
    "PluginVersion",
    "parse_version",
]
