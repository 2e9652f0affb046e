import re
from dataclasses import dataclass, field

NUMBER_PATTERN = re.compile(r"^\d+$")
COMMAND_PREFIXES = ("/", "!")
KEYWORD_STRIP_PATTERN = re.compile(r"[^\w\sáéíóúâêîôûãõç]", re.IGNORECASE)
MIN_KEYWORD_LENGTH = 3


@dataclass
class ParsedInput:
    original: str
    normalized: str
    is_number: bool = False
    number: int | None = None
    is_command: bool = False
    command: str | None = None
    args: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)


def parse_input(text: str | None) -> ParsedInput:
    """Classify a raw message. Never raises; empty input yields an empty token."""
    original = text if isinstance(text, str) else ""
    normalized = original.strip().lower()
    parsed = ParsedInput(original=original, normalized=normalized)

    if NUMBER_PATTERN.match(normalized):
        parsed.is_number = True
        parsed.number = int(normalized)

    if normalized.startswith(COMMAND_PREFIXES):
        parts = normalized[1:].split()
        parsed.is_command = True
        parsed.command = parts[0] if parts else ""
        parsed.args = parts[1:]

    cleaned = KEYWORD_STRIP_PATTERN.sub("", normalized)
    parsed.keywords = [word for word in cleaned.split() if len(word) >= MIN_KEYWORD_LENGTH]
    return parsed
