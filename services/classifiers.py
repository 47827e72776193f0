"""
Bubble classifier abstraction and the chain that combines classifiers.

Each classifier either answers confidently for a bubble or passes. The chain
asks its classifiers in order and takes the first answer; the last link
(position) always answers, so every bubble ends up classified.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from models.data_models import Classification, ColorRegion, MessageBubble, Side, SpeakerMapping


@dataclass
class ClassificationContext:
    """Request-scoped state shared by the classifiers of one image."""
    pixels: Optional[np.ndarray] = None
    width: int = 0
    height: int = 0
    regions: List[ColorRegion] = field(default_factory=list)
    split_point: Optional[float] = None

    def side_of(self, bubble: MessageBubble) -> Optional[Side]:
        if self.split_point is None:
            return None
        return Side.LEFT if bubble.centroid_x < self.split_point else Side.RIGHT


class BubbleClassifier:
    """Base class for bubble classifiers."""

    method = "base"

    def prepare(self, bubbles: Sequence[MessageBubble], context: ClassificationContext) -> None:
        """Compute per-image state (regions, split point) before classifying."""

    def classify(self, bubble: MessageBubble, context: ClassificationContext) -> Optional[Classification]:
        """Return a classification, or None to defer to the next classifier."""
        raise NotImplementedError


class ClassifierChain:
    """Chain of responsibility over bubble classifiers."""

    def __init__(self, classifiers: Sequence[BubbleClassifier]):
        if not classifiers:
            raise ValueError("classifier chain needs at least one classifier")
        self.classifiers = list(classifiers)
        self.logger = logging.getLogger(__name__)

    @property
    def methods(self) -> List[str]:
        return [c.method for c in self.classifiers]

    def classify_all(self, bubbles: Sequence[MessageBubble], context: ClassificationContext, logger=None) -> List[Classification]:
        log = logger or self.logger
        for classifier in self.classifiers:
            classifier.prepare(bubbles, context)

        results: List[Classification] = []
        for bubble in bubbles:
            result = self.classify(bubble, context)
            if result is None:
                raise RuntimeError("classifier chain produced no answer; the last classifier must always answer")
            results.append(result)

        counts = {}
        for r in results:
            counts[r.method] = counts.get(r.method, 0) + 1
        log.debug(f"Classified {len(results)} bubbles via {' -> '.join(self.methods)}: {counts}")
        return results

    def classify(self, bubble: MessageBubble, context: ClassificationContext) -> Optional[Classification]:
        for classifier in self.classifiers:
            result = classifier.classify(bubble, context)
            if result is not None:
                return result
        return None


def select_chain(mapping: SpeakerMapping, color: BubbleClassifier, position: BubbleClassifier,
                 use_color_with_side_mapping: bool = False) -> ClassifierChain:
    """
    Pick the classifiers for a request.

    A colour mapping ("green is mine") consults colour first. A declared side
    goes straight to position unless colour is explicitly enabled for it.
    """
    if mapping.uses_color or use_color_with_side_mapping:
        return ClassifierChain([color, position])
    return ClassifierChain([position])
