"""版本比较与约束

版本号是点分数字串，非数字尾部被忽略（"1.2.0-beta" 视为 1.2.0）。
约束 "X.Y.Z" 被 "A.B.C" 满足，当且仅当 A == X 且 (B, C) >= (Y, Z)；
无约束时任何版本都满足。主版本号相同的两个约束相互兼容，取较高者生效。
"""

from __future__ import annotations

import re

_LEADING_DIGITS = re.compile(r"^\s*(\d+)")


def parse_version(text: str | None) -> tuple[int, ...]:
    if not text:
        return (0,)
    parts: list[int] = []
    for component in str(text).split("."):
        m = _LEADING_DIGITS.match(component)
        if m is None:
            break
        parts.append(int(m.group(1)))
        if m.end() != len(component):
            break
    return tuple(parts) or (0,)


def _pad(v: tuple[int, ...], width: int) -> tuple[int, ...]:
    return v + (0,) * (width - len(v))


def satisfies(version: str, constraint: str | None) -> bool:
    if not constraint:
        return True
    have, need = parse_version(version), parse_version(constraint)
    width = max(len(have), len(need))
    have, need = _pad(have, width), _pad(need, width)
    return have[0] == need[0] and have[1:] >= need[1:]


def compatible(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return True
    return parse_version(a)[0] == parse_version(b)[0]


def strongest(constraints: list[str | None]) -> str | None:
    """兼容约束中的最高者；全部为空时返回 None"""
    present = [c for c in constraints if c]
    if not present:
        return None
    return max(present, key=parse_version)
