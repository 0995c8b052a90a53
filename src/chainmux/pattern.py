"""Path template compilation.

Templates are `/`-separated. Supported segments:

    literal     matches itself exactly
    :name       one non-empty segment, bound to ``name``
    :name?      zero or one segment, bound to ``name`` when present
    *           the rest of the path (possibly empty), bound to ``"*"``
    *name       the rest of the path (possibly empty), bound to ``name``

Templates made only of literals and ``:name`` segments are matched by
comparing segments; anything using optional parameters or wildcards is
compiled into a single anchored regular expression.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache

WILDCARD = "*"


class Strategy(Enum):
    SEGMENTS = "segments"  # split on "/", compare segment by segment
    REGEX = "regex"  # one anchored regular expression

    def __repr__(self) -> str:
        return str(self.value)


class SegmentKind(Enum):
    LITERAL = "literal"
    PARAM = "param"
    OPTIONAL = "optional"
    WILDCARD = "wildcard"


@dataclass(slots=True, frozen=True)
class Segment:
    kind: SegmentKind
    value: str  # literal text or parameter name


@dataclass(slots=True, frozen=True)
class PathPattern:
    """Compiled path template."""

    template: str
    strategy: Strategy
    segments: tuple[Segment, ...]
    param_names: tuple[str, ...]
    regex: re.Pattern[str] | None = field(default=None, compare=False)

    def match(self, path: str) -> dict[str, str] | None:
        """Returns the params bound by `path`, or None if it doesn't match."""
        if self.regex is None:
            return self._match_segments(path)
        return self._match_regex(self.regex, path)

    def _match_segments(self, path: str) -> dict[str, str] | None:
        stripped = path.strip("/")
        parts = stripped.split("/") if stripped else []
        if len(parts) != len(self.segments):
            return None
        params: dict[str, str] = {}
        for seg, part in zip(self.segments, parts, strict=True):
            if seg.kind is SegmentKind.PARAM:
                if not part:
                    return None
                params[seg.value] = part
            elif seg.value != part:
                return None
        return params

    def _match_regex(self, regex: re.Pattern[str], path: str) -> dict[str, str] | None:
        m = regex.match(path)
        if m is None:
            return None
        params: dict[str, str] = {}
        for seg, value in zip(self._captures(), m.groups(), strict=True):
            if value is not None:
                params[seg.value] = value
            elif seg.kind is SegmentKind.WILDCARD:
                params[seg.value] = ""  # wildcard always binds, possibly empty
        return params

    def _captures(self) -> tuple[Segment, ...]:
        return tuple(s for s in self.segments if s.kind is not SegmentKind.LITERAL)


@lru_cache(maxsize=1024)
def compile_pattern(template: str) -> PathPattern:
    """Compile a path template into a PathPattern.

    Raises ValueError for structurally invalid templates.
    """
    if not template.startswith("/"):
        msg = f"path must start with '/', provided {template=}"
        raise ValueError(msg)

    raw = [s for s in template.split("/") if s]  # "/test" and "/test/" are equivalent
    segments: list[Segment] = []
    for i, part in enumerate(raw):
        seg = _parse_segment(part)
        if seg.kind is SegmentKind.WILDCARD and i != len(raw) - 1:
            msg = f"wildcard must be the last segment, provided {template=}"
            raise ValueError(msg)
        segments.append(seg)

    names = tuple(s.value for s in segments if s.kind is not SegmentKind.LITERAL)
    if len(set(names)) != len(names):
        msg = f"duplicate parameter names in {template=}"
        raise ValueError(msg)

    if all(s.kind in (SegmentKind.LITERAL, SegmentKind.PARAM) for s in segments):
        return PathPattern(
            template=template,
            strategy=Strategy.SEGMENTS,
            segments=tuple(segments),
            param_names=names,
        )

    regex = re.compile("^" + "".join(_to_regex(s) for s in segments) + "/?$")
    if regex.groups != len(names):  # invariant: one group per declared param
        msg = f"compiled pattern has {regex.groups} groups for {len(names)} params"
        raise ValueError(msg)
    return PathPattern(
        template=template,
        strategy=Strategy.REGEX,
        segments=tuple(segments),
        param_names=names,
        regex=regex,
    )


def _parse_segment(part: str) -> Segment:
    if part.startswith(":"):
        optional = part.endswith("?")
        name = part[1:-1] if optional else part[1:]
        if not name:
            msg = f"parameter name cannot be empty, provided segment {part!r}"
            raise ValueError(msg)
        return Segment(SegmentKind.OPTIONAL if optional else SegmentKind.PARAM, name)
    if part.startswith(WILDCARD):
        return Segment(SegmentKind.WILDCARD, part[1:] or WILDCARD)
    return Segment(SegmentKind.LITERAL, part)


def _to_regex(seg: Segment) -> str:
    match seg.kind:
        case SegmentKind.LITERAL:
            return "/" + re.escape(seg.value)
        case SegmentKind.PARAM:
            return "/([^/]+)"
        case SegmentKind.OPTIONAL:
            return "(?:/([^/]+))?"
        case SegmentKind.WILDCARD:
            return "(?:/(.*?))?"  # lazy: a trailing "/" is left to the suffix
