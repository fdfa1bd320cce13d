"""
rangelint/options.py
════════════════════

Named, per-analyzer options.

An analyzer declares its options as :class:`Option` records; the driver
supplies raw values (strings from the command line or plain Python values
from an API caller) and :func:`resolve_options` turns them into parsed
values before any unit is analysed.  A malformed value is a configuration
error.

Every check carries the target-version option: it selects which rules of
a rule table apply to the language version the analysed code targets.
Options never change how ranges are computed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from rangelint.errors import InvalidOptionError

TARGET_VERSION = "target-version"

_VERSION_RE = re.compile(r"^(?:go)?1\.(\d+)$")


@dataclass(frozen=True)
class Option:
    """Declaration of one analyzer option.

    ``parse`` receives the raw value and returns the parsed value; it
    raises ``ValueError`` for bad input.
    """

    name: str
    doc: str
    default: Any = None
    parse: Callable[[Any], Any] = lambda raw: raw

    def resolve(self, raw: Any, analyzer: str = "") -> Any:
        if raw is None:
            return self.default
        try:
            return self.parse(raw)
        except (TypeError, ValueError) as exc:
            name = f"{analyzer}.{self.name}" if analyzer else self.name
            raise InvalidOptionError(name, raw, str(exc)) from exc


def parse_version(raw: Any) -> Optional[int]:
    """Parse ``"1.N"`` into ``N``; ``"latest"`` gives ``None``.

    >>> parse_version("1.21")
    21
    >>> parse_version("latest") is None
    True
    """
    if isinstance(raw, int) and not isinstance(raw, bool):
        if raw < 0:
            raise ValueError("minor version must be non-negative")
        return raw
    if not isinstance(raw, str):
        raise ValueError("expected a version string")
    text = raw.strip()
    if text.lower() == "latest":
        return None
    m = _VERSION_RE.match(text)
    if not m:
        raise ValueError("expected '1.N' or 'latest'")
    return int(m.group(1))


def format_version(minor: Optional[int]) -> str:
    return "latest" if minor is None else f"1.{minor}"


def target_version_option() -> Option:
    return Option(
        name=TARGET_VERSION,
        doc="Language version targeted by the analysed code ('1.N' or 'latest').",
        default=None,
        parse=parse_version,
    )


def resolve_options(
    analyzer: str,
    declared: Sequence[Option],
    supplied: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Parse ``supplied`` against ``declared``.

    Raises
    ------
    InvalidOptionError
        For an undeclared option name or an unparsable value.
    """
    supplied = supplied or {}
    by_name = {o.name: o for o in declared}
    for name in supplied:
        if name not in by_name:
            raise InvalidOptionError(f"{analyzer}.{name}", supplied[name], "no such option")
    return {o.name: o.resolve(supplied.get(o.name), analyzer) for o in declared}
