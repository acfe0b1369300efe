"""Ignore-pattern matching for captured commands."""


def should_ignore(command: str, patterns: list[str]) -> bool:
    """True if ``command`` matches any pattern, case-insensitively.

    Patterns are globs where ``*`` matches any run of characters.
    """
    text = command.upper()
    return any(glob_match(text, pattern.upper()) for pattern in patterns)


def glob_match(text: str, pattern: str) -> bool:
    """Match ``text`` against a ``*``-only glob.

    The first segment is anchored at the start, the last at the end, and the
    middle segments must appear in order between them.
    """
    parts = pattern.split("*")
    if len(parts) == 1:
        return text == pattern

    first, last = parts[0], parts[-1]
    if not text.startswith(first):
        return False
    if not text.endswith(last):
        return False

    pos = len(first)
    for part in parts[1:-1]:
        if not part:
            continue
        idx = text.find(part, pos)
        if idx == -1:
            return False
        pos = idx + len(part)

    return True
