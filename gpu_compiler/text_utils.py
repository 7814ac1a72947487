"""Small scanning helpers shared by the two front ends."""

from __future__ import annotations

from gpu_compiler.errors import ProgramParseError


def split_top_level(text: str, open_chars: str = "({[", close_chars: str = ")}]") -> list[str]:
    """Split on commas that are not nested inside any bracket pair."""
    parts, depth, current = [], 0, []
    for ch in text:
        if ch in open_chars:
            depth += 1
        elif ch in close_chars:
            depth -= 1
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def matching_paren(text: str, start: int, lineno: int | None = None) -> int:
    """Index of the ')' closing the '(' at `start`."""
    depth = 0
    for i in range(start, len(text)):
        if text[i] == "(":
            depth += 1
        elif text[i] == ")":
            depth -= 1
            if depth == 0:
                return i
    raise ProgramParseError("unbalanced parentheses", lineno)


def strip_comment(line: str) -> str:
    idx = line.find("//")
    return line if idx < 0 else line[:idx]
