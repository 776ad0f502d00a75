"""Prompt compression for the thinking loop.

Keeps what is sent to providers under a character budget: whitespace is
collapsed, the oldest context messages are dropped first, and carried-over
answers and critiques are truncated in the middle.
"""

import re

_WHITESPACE = re.compile(r"[ \t]+")
_BLANK_LINES = re.compile(r"\n{3,}")

TRUNCATION_MARKER = "\n[...]\n"


def collapse_whitespace(text: str) -> str:
    text = _WHITESPACE.sub(" ", text)
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()


def truncate_middle(text: str, limit: int) -> str:
    """Shorten text to at most ``limit`` characters, keeping head and tail."""
    if len(text) <= limit:
        return text
    if limit <= len(TRUNCATION_MARKER):
        return text[:limit]
    keep = limit - len(TRUNCATION_MARKER)
    head = keep // 2 + keep % 2
    tail = keep // 2
    return text[:head] + TRUNCATION_MARKER + (text[-tail:] if tail else "")


def compress_context(messages: list[dict[str, str]], budget_chars: int) -> list[dict[str, str]]:
    """Collapse whitespace and keep the most recent messages that fit the budget.

    System messages are always kept. Returns a new list; the input is not
    modified.
    """
    compressed = [
        {"role": m.get("role", "user"), "content": collapse_whitespace(m.get("content", ""))}
        for m in messages
    ]
    system = [m for m in compressed if m["role"] == "system"]
    others = [m for m in compressed if m["role"] != "system"]

    used = sum(len(m["content"]) for m in system)
    kept: list[dict[str, str]] = []
    for message in reversed(others):
        size = len(message["content"])
        if used + size > budget_chars:
            break
        kept.append(message)
        used += size

    kept.reverse()
    return system + kept
