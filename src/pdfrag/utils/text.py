"""Text helpers for boundary-aware splitting."""

from __future__ import annotations

from typing import List, Sequence

SEPARATORS: Sequence[str] = ("\n\n", "\n", " ")


def recursive_split(
    text: str, max_length: int, separators: Sequence[str] = SEPARATORS
) -> List[str]:
    """Split ``text`` into pieces no longer than ``max_length``.

    Each cut happens at the last paragraph break before the limit, then the
    last line break, then the last space. Text with none of those is cut hard
    at the limit. Pieces are returned untrimmed and may be blank.
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")

    pieces: List[str] = []
    remaining = text
    while len(remaining) > max_length:
        for sep in separators:
            # A separator starting exactly at the limit still leaves a head of max_length.
            idx = remaining.rfind(sep, 0, max_length + len(sep))
            if idx > 0:
                pieces.append(remaining[:idx])
                remaining = remaining[idx + len(sep) :]
                break
        else:
            pieces.append(remaining[:max_length])
            remaining = remaining[max_length:]
    pieces.append(remaining)
    return pieces


def normalize_whitespace(text: str) -> str:
    """Trim trailing spaces on each line and collapse runs of blank lines."""
    lines = [line.rstrip() for line in text.splitlines()]
    out: List[str] = []
    blank = False
    for line in lines:
        if not line.strip():
            if out and not blank:
                out.append("")
            blank = True
            continue
        out.append(line)
        blank = False
    return "\n".join(out).strip()
