"""Small string and number helpers, including duration text."""

from __future__ import annotations

import re

_UINT64 = 1 << 64
_NS = 1_000_000_000
_MAX_DURATION = (1 << 63) - 1

_DIGITS = re.compile(r"[0-9]+")
_NUMBER = re.compile(r"([0-9]*)(\.([0-9]*))?")
_UNIT = re.compile(r"[^0-9.]*")

_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": _NS,
    "m": 60 * _NS,
    "h": 3600 * _NS,
}


def itoa_quick(i: int) -> str:
    """Decimal text of an integer."""
    return str(int(i))


def acatui(text: str, sep: str, n: int) -> str:
    """Join text, a separator and an unsigned 64-bit number."""
    if not 0 <= n < _UINT64:
        raise ValueError(f"{n} is not an unsigned 64-bit value")
    return f"{text}{sep}{n}"


def acati(text: str, sep: str, n: int) -> str:
    """Like acatui, with the number taken as unsigned 64-bit."""
    return acatui(text, sep, n % _UINT64)


def addrcat(host: str, port: int) -> str:
    """Join a host and a port into an address."""
    return acati(host, ":", port)


def atoi(text: str) -> int:
    """Parse an unsigned number, giving 0 for anything invalid."""
    text = text.strip(" ")
    if not _DIGITS.fullmatch(text):
        return 0
    value = int(text)
    return value if value < _UINT64 else 0


def _invalid(orig: str) -> str:
    return f'time: invalid duration "{orig}"'


def parse_duration(text: str) -> float:
    """Parse a duration such as "1h10m30s" or "1.5ms" into seconds."""
    orig = text
    rest = text
    negative = False
    if rest and rest[0] in "+-":
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise ValueError(_invalid(orig))

    total = 0
    while rest:
        number = _NUMBER.match(rest)
        whole, fraction = number.group(1), number.group(3) or ""
        if not whole and not fraction:
            raise ValueError(_invalid(orig))
        rest = rest[number.end():]

        unit_text = _UNIT.match(rest).group(0)
        if not unit_text:
            raise ValueError(f'time: missing unit in duration "{orig}"')
        unit = _UNITS.get(unit_text)
        if unit is None:
            raise ValueError(f'time: unknown unit "{unit_text}" in duration "{orig}"')
        rest = rest[len(unit_text):]

        value = int(whole or "0") * unit
        if fraction:
            value += int(fraction) * unit // 10 ** len(fraction)
        total += value
        if total > 1 << 63:
            raise ValueError(_invalid(orig))

    if negative:
        total = -total
    if total > _MAX_DURATION:
        raise ValueError(_invalid(orig))
    return total / _NS


def _fraction_part(rest: int, precision: int) -> str:
    digits = f"{rest:0{precision}d}".rstrip("0")
    return f".{digits}" if digits else ""


def _with_fraction(value: int, precision: int) -> str:
    whole, rest = divmod(value, 10**precision)
    return f"{whole}{_fraction_part(rest, precision)}"


def format_duration(seconds) -> str:
    """Render seconds as duration text, e.g. 4230 -> "1h10m30s"."""
    if isinstance(seconds, int):
        ns = seconds * _NS
    else:
        ns = round(seconds * 1e9)
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    u = abs(ns)

    if u < _NS:
        if u < 1_000:
            return f"{sign}{u}ns"
        if u < 1_000_000:
            return f"{sign}{_with_fraction(u, 3)}\u00b5s"
        return f"{sign}{_with_fraction(u, 6)}ms"

    total_seconds, rest = divmod(u, _NS)
    text = f"{total_seconds % 60}{_fraction_part(rest, 9)}s"
    minutes = total_seconds // 60
    if minutes:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours:
            text = f"{hours}h{text}"
    return sign + text