"""
Position classifier: assigns bubbles to the left or right column.
"""
import logging
from typing import Optional, Sequence

from models.config import PositionConfig
from models.data_models import Classification, MessageBubble, Side
from services.classifiers import BubbleClassifier, ClassificationContext


class PositionClassifier(BubbleClassifier):
    """
    Splits bubbles at the widest gap between their sorted X-centroids.

    Two-party chat layouts put each party against one edge, so the centroids
    are bimodal and the widest gap separates the columns. When there is no
    meaningful gap (one bubble, or everyone in one column) the split falls
    back to the middle of the image.
    """

    method = "position"

    def __init__(self, config: Optional[PositionConfig] = None):
        self.config = config or PositionConfig()
        self.logger = logging.getLogger(__name__)

    def compute_split_point(self, xs: Sequence[float], image_width: Optional[int] = None) -> float:
        values = sorted(set(float(x) for x in xs))
        fallback = image_width / 2.0 if image_width else None

        if len(values) < 2:
            if fallback is not None:
                return fallback
            # No width and no spread: keep everything in the left column
            return (values[0] + 1.0) if values else 0.0

        best_gap, split = 0.0, None
        for lo, hi in zip(values, values[1:]):
            if hi - lo > best_gap:
                best_gap, split = hi - lo, (lo + hi) / 2.0

        if best_gap < self.config.min_split_gap:
            if fallback is not None:
                return fallback
            return values[-1] + 1.0
        return split

    def side_for(self, x: float, split_point: float) -> Side:
        return Side.LEFT if x < split_point else Side.RIGHT

    def prepare(self, bubbles: Sequence[MessageBubble], context: ClassificationContext) -> None:
        context.split_point = self.compute_split_point([b.centroid_x for b in bubbles], context.width or None)
        self.logger.debug(f"Left/right split at x = {context.split_point:.1f}")

    def classify(self, bubble: MessageBubble, context: ClassificationContext) -> Classification:
        if context.split_point is None:
            self.prepare([bubble], context)
        return Classification(method=self.method, side=self.side_for(bubble.centroid_x, context.split_point))
