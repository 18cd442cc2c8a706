"""URI templates (RFC 6570) used to match incoming resource URIs."""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import unquote


@dataclass(frozen=True)
class _Operator:
    first: str
    sep: str
    named: bool
    ifemp: str
    reserved: bool


_OPERATORS = {
    "": _Operator("", ",", False, "", False),
    "+": _Operator("", ",", False, "", True),
    "#": _Operator("#", ",", False, "", True),
    ".": _Operator(".", ".", False, "", False),
    "/": _Operator("/", "/", False, "", False),
    ";": _Operator(";", ";", True, "", False),
    "?": _Operator("?", "&", True, "=", False),
    "&": _Operator("&", "&", True, "=", False),
}
_RESERVED_OPERATORS = "=,!@|"

_SEGMENT = re.compile(r"\{([^{}]*)\}|([^{}]+)|(.)", re.DOTALL)
_VARNAME = re.compile(
    r"(?:[A-Za-z0-9_]|%[0-9A-Fa-f]{2})(?:\.?(?:[A-Za-z0-9_]|%[0-9A-Fa-f]{2}))*"
)
_PREFIX = re.compile(r"[1-9][0-9]{0,3}")


@dataclass(frozen=True)
class _VarSpec:
    name: str
    explode: bool
    prefix: int | None
    group: str
    operator: _Operator
    allow_comma: bool


def _value_pattern(op: _Operator, allow_comma: bool) -> str:
    chars = r"A-Za-z0-9\-_~"
    if op.sep != ".":
        chars += "."
    if op.reserved:
        chars += r":/?#\[\]@!$&'()*+,;="
    elif allow_comma:
        chars += ","
    return f"(?:[{chars}]|%[0-9A-Fa-f]{{2}})"


def _var_pattern(spec: _VarSpec) -> str:
    op = spec.operator
    char = _value_pattern(op, spec.allow_comma)
    value = f"{char}{{0,{spec.prefix}}}" if spec.prefix else f"{char}*"
    sep = re.escape(op.sep)
    if not op.named:
        return f"{value}(?:{sep}{value})*" if spec.explode else value
    name = re.escape(spec.name)
    assign = f"{name}(?:={value})?" if op.ifemp == "" else f"{name}={value}"
    return f"{assign}(?:{sep}{assign})*" if spec.explode else assign


def _parse_varspec(text: str, op: _Operator, group: str, allow_comma: bool) -> _VarSpec:
    explode = False
    prefix = None
    name = text
    if text.endswith("*"):
        explode = True
        name = text[:-1]
    elif ":" in text:
        name, _, digits = text.partition(":")
        if not _PREFIX.fullmatch(digits):
            raise ValueError(f"invalid prefix modifier in {text!r}")
        prefix = int(digits)
    if not _VARNAME.fullmatch(name):
        raise ValueError(f"invalid variable name {name!r}")
    return _VarSpec(name, explode, prefix, group, op, allow_comma)


def _compile(raw: str) -> tuple[list[_VarSpec], str]:
    specs: list[_VarSpec] = []
    parts: list[str] = []
    for segment in _SEGMENT.finditer(raw):
        expression, literal, stray = segment.groups()
        if stray is not None:
            raise ValueError(f"unbalanced brace at position {segment.start()} in {raw!r}")
        if literal is not None:
            parts.append(re.escape(literal))
            continue
        if not expression:
            raise ValueError(f"empty expression in {raw!r}")
        if expression[0] in _RESERVED_OPERATORS:
            raise ValueError(f"reserved operator {expression[0]!r} in {raw!r}")
        key = expression[0] if expression[0] in _OPERATORS else ""
        op = _OPERATORS[key]
        varlist = expression[len(key):].split(",")
        allow_comma = len(varlist) == 1
        for position, text in enumerate(varlist):
            spec = _parse_varspec(text, op, f"g{len(specs)}", allow_comma)
            specs.append(spec)
            lead = re.escape(op.first if position == 0 else op.sep)
            parts.append(f"(?:{lead}(?P<{spec.group}>{_var_pattern(spec)}))?")
    return specs, "".join(parts)


def _decode(spec: _VarSpec, text: str) -> list[str]:
    op = spec.operator
    if op.named:
        pieces = text.split(op.sep) if spec.explode else [text]
        values = [piece.partition("=")[2] for piece in pieces]
    elif spec.explode:
        values = text.split(op.sep)
    elif spec.allow_comma and not op.reserved:
        values = text.split(",")
    else:
        values = [text]
    return [unquote(value) for value in values]


class URITemplate:
    """A parsed URI template that can test and extract values from URIs."""

    def __init__(self, raw: str) -> None:
        self.raw = raw
        self._specs, pattern = _compile(raw)
        self._regex = re.compile(pattern)

    def matches(self, uri: str) -> bool:
        """Return whether the whole URI fits the template."""
        return self._regex.fullmatch(uri) is not None

    def match(self, uri: str) -> dict[str, list[str]] | None:
        """Return the variable values found in the URI, or None if it does not fit."""
        found = self._regex.fullmatch(uri)
        if found is None:
            return None
        result: dict[str, list[str]] = {}
        for spec in self._specs:
            text = found.group(spec.group)
            if text is None or spec.name in result:
                continue
            result[spec.name] = _decode(spec, text)
        return result

    def variable_names(self) -> list[str]:
        """Return the template's variable names in order of first appearance."""
        return list(dict.fromkeys(spec.name for spec in self._specs))

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"URITemplate({self.raw!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, URITemplate):
            return self.raw == other.raw
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.raw)