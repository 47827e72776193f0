"""
Turns labeled bubbles into the ordered transcript.
"""
from typing import Iterable, List

from models.data_models import ExtractedMessage, LabeledBubble


class TranscriptAssembler:
    """One bubble, one message, ordered top to bottom."""

    def assemble(self, labeled: Iterable[LabeledBubble]) -> List[ExtractedMessage]:
        messages = [
            ExtractedMessage(text=item.bubble.text, speaker=item.speaker, y=item.bubble.centroid_y)
            for item in labeled
        ]
        # sorted() is stable: bubbles at the same height keep reading order
        return sorted(messages, key=lambda m: m.y)

    @staticmethod
    def to_conversation_text(messages: Iterable[ExtractedMessage]) -> str:
        """Render ``Speaker: text`` lines for the downstream analysis call."""
        return "\n".join(f"{m.speaker}: {m.text}" for m in messages)
