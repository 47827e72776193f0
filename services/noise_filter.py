"""
Noise filter for recognized text lines.

Drops lines that are chat UI chrome rather than message content: timestamps,
delivery ticks, date separators, status labels and OCR debris.
"""
import logging
import re
from typing import Iterable, List, Optional, Pattern, Sequence, Union

from models.config import NoiseFilterConfig
from models.data_models import ContentLine, RawTextLine


_MONTHS = (
    r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?"
)
_WEEKDAYS = r"mon(?:day)?|tue(?:s(?:day)?)?|wed(?:nesday)?|thu(?:rs(?:day)?)?|fri(?:day)?|sat(?:urday)?|sun(?:day)?"

# Check marks and their usual OCR misreadings ("86V/", "88x/", "//", "vv")
_TICKS = r"(?:[✓✔√/\\]{1,3}|[vV]{1,2}/?|\d{0,2}[vVxX]{1,2}/|\d{2,3}/)"

_TIME = r"\d{1,2}[:.]\d{2}(?:\s*[ap]\.?\s?m\.?)?"

DEFAULT_PATTERNS: Sequence[str] = (
    # 10:32, 9.05, 10:32 PM, 10:32 ✓✓, 10:32 86V/
    rf"^{_TIME}(?:\s*{_TICKS})?\s*$",
    # Bare delivery / read receipt artifacts
    rf"^{_TICKS}$",
    r"^(?:\d{1,3}[vVxX]{1,2}/?)$",
    # Date separators: 5 March 2024, March 5, 2024, 05/03/2024
    rf"^\d{{1,2}}(?:st|nd|rd|th)?\s+(?:{_MONTHS})\.?,?\s+\d{{4}}$",
    rf"^(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}$",
    r"^\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}$",
    # Day labels, optionally with a time: "Today", "Yesterday 9:14", "Monday"
    rf"^(?:today|yesterday|{_WEEKDAYS})(?:\s+(?:at\s+)?{_TIME})?$",
    rf"^(?:{_MONTHS})$",
    # Bare short numbers (badge counts, page numbers)
    r"^\d{1,3}$",
    # Chat UI chrome
    r"^online$",
    r"^last seen\b.*$",
    r"^typing(?:\.{3}|…)?$",
    r"^type a message$",
    r"^(?:delivered|read|seen|sent)$",
    r"^whatsapp$",
    r"^(?:camera|microphone|gallery|document|contact|location)$",
)


LineInput = Union[RawTextLine, ContentLine]


class NoiseFilter:
    """Order-preserving filter that keeps only message content lines."""

    def __init__(self, config: Optional[NoiseFilterConfig] = None):
        self.config = config or NoiseFilterConfig()
        self.logger = logging.getLogger(__name__)
        self.patterns: List[Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in DEFAULT_PATTERNS]
        for extra in self.config.extra_patterns or []:
            try:
                self.patterns.append(re.compile(extra, re.IGNORECASE))
            except re.error as e:
                raise ValueError(f"Invalid noise pattern {extra!r}: {e}")

    def is_noise(self, text: str) -> bool:
        """Return True when ``text`` is UI chrome rather than content."""
        t = (text or "").strip()
        if len(t) < self.config.min_chars:
            return True
        return any(p.match(t) for p in self.patterns)

    def filter(self, lines: Iterable[LineInput], logger=None) -> List[ContentLine]:
        """
        Drop noise lines and reduce the survivors to ``ContentLine``.

        Already-filtered ``ContentLine`` input passes through unchanged, so a
        second pass removes nothing.
        """
        log = logger or self.logger
        kept: List[ContentLine] = []
        dropped = 0
        for line in lines:
            if self.is_noise(line.text):
                dropped += 1
                log.debug(f"Dropped noise line: {line.text!r}")
                continue
            if isinstance(line, ContentLine):
                kept.append(line)
            else:
                kept.append(ContentLine.from_raw(line))
        if dropped:
            log.info(f"Noise filter kept {len(kept)} lines, dropped {dropped}")
        return kept
