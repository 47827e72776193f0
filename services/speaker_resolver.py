"""
Maps classifier output to speaker names.
"""
import logging
from typing import List, Optional, Sequence

from models.data_models import (
    Classification,
    ColorClass,
    LabeledBubble,
    MessageBubble,
    Side,
    SpeakerMapping,
)


class SpeakerResolver:
    """
    Resolves each classified bubble to ``me_name`` or ``them_name``.

    Colour answers are absolute: sent bubbles are the device owner's. Position
    answers use the declared side; with a colour mapping the owner's side is
    inferred from where the colour-classified bubbles sit.
    """

    def __init__(self, default_owner_side: str = "RIGHT"):
        self.default_owner_side = Side(default_owner_side.upper())
        self.logger = logging.getLogger(__name__)

    def resolve(self, bubbles: Sequence[MessageBubble], classifications: Sequence[Classification],
                mapping: SpeakerMapping, logger=None) -> List[LabeledBubble]:
        if len(bubbles) != len(classifications):
            raise ValueError("every bubble needs exactly one classification")
        log = logger or self.logger

        owner_side = mapping.my_side
        if owner_side is None:
            owner_side = self.infer_owner_side(classifications)
            log.debug(f"Owner side inferred as {owner_side.value}")

        labeled = []
        for bubble, result in zip(bubbles, classifications):
            labeled.append(LabeledBubble(bubble=bubble, speaker=self._speaker(result, owner_side, mapping),
                                         classification=result))
        return labeled

    def infer_owner_side(self, classifications: Sequence[Classification]) -> Side:
        """Side holding most sent bubbles (received bubbles vote for the other side)."""
        votes = {Side.LEFT: 0, Side.RIGHT: 0}
        for result in classifications:
            if result.method != "color" or result.side is None:
                continue
            if result.color_class is ColorClass.SENT:
                votes[result.side] += 1
            elif result.color_class is ColorClass.RECEIVED:
                votes[_other(result.side)] += 1
        if votes[Side.LEFT] == votes[Side.RIGHT]:
            return self.default_owner_side
        return Side.LEFT if votes[Side.LEFT] > votes[Side.RIGHT] else Side.RIGHT

    @staticmethod
    def _speaker(result: Classification, owner_side: Side, mapping: SpeakerMapping) -> str:
        if result.color_class is ColorClass.SENT:
            return mapping.me_name
        if result.color_class is ColorClass.RECEIVED:
            return mapping.them_name
        side: Optional[Side] = result.side
        if side is None:
            side = owner_side
        return mapping.me_name if side is owner_side else mapping.them_name


def _other(side: Side) -> Side:
    return Side.RIGHT if side is Side.LEFT else Side.LEFT
