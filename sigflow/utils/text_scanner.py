import logging
import re
from typing import Iterable

from sigflow.exceptions import ScanFailure

logger = logging.getLogger(__name__)

CONTEXT_CLOSERS = {
    "{": "}",
    "[": "]",
    '"': '"',
    "/": "/",  # regex literal
}

# A "/" only opens a regex literal when it follows one of these characters.
REGEX_PRECEDERS = frozenset("(,=:[!&|?{};")

INITIAL_PLAYER_RESPONSE_PATTERNS = [
    r"window\[['\"]ytInitialPlayerResponse['\"]]\s*=\s*",
    r"ytInitialPlayerResponse\s*=\s*",
]


def find_object_from_startpoint(html: str, start_point: int) -> str:
    """
    Extracts the balanced object or array literal starting at ``start_point``.

    Double quoted strings and regex literals are treated as opaque. A closer
    that does not belong to the innermost context is ignored. A ``/`` is
    only read as the start of a regex literal when the last non-whitespace
    character before it is one of ``REGEX_PRECEDERS``, otherwise it is taken
    as a division operator.

    Args:
        html (str): The text to scan.
        start_point (int): Offset of the opening ``{`` or ``[``.

    Returns:
        str: The literal, from its opener up to and including its closer.

    Raises:
        ScanFailure: If no opener sits at ``start_point`` or if the text ends
            before every context is closed.
    """
    if start_point < 0 or start_point >= len(html):
        raise ScanFailure(f"Start offset {start_point} is outside the text")

    text = html[start_point:]
    if text[0] not in "{[":
        raise ScanFailure(f"Expected '{{' or '[' at offset {start_point}, found {text[0]!r}")

    stack = [text[0]]
    last_char = text[0]
    i = 1
    while i < len(text) and stack:
        char = text[i]
        context = stack[-1]

        if char == CONTEXT_CLOSERS[context]:
            stack.pop()
        elif context in "\"/":
            if char == "\\":
                i += 2
                continue
        elif char in CONTEXT_CLOSERS:
            if char != "/" or last_char in REGEX_PRECEDERS:
                stack.append(char)

        if not char.isspace():
            last_char = char
        i += 1

    if stack:
        raise ScanFailure(f"Text ended with {len(stack)} unclosed context(s) from offset {start_point}")

    return text[:i]


def find_object_from_pattern(html: str, patterns: Iterable[str]) -> str:
    """Scan from the end of the first anchor pattern that yields a literal."""
    for pattern in patterns:
        for match in re.finditer(pattern, html):
            try:
                return find_object_from_startpoint(html, match.end())
            except ScanFailure as e:
                logger.debug(f"Anchor {pattern!r} matched at {match.start()} but scan failed: {e}")
    raise ScanFailure("No embedded data found")


def initial_player_response(watch_html: str) -> str:
    return find_object_from_pattern(watch_html, INITIAL_PLAYER_RESPONSE_PATTERNS)
