"""
Groups content lines into chat bubbles by spatial proximity.
"""
import logging
from typing import List, Optional

from models.config import ClusterConfig
from models.data_models import ContentLine, MessageBubble


class BubbleClusterer:
    """
    Single-pass greedy clustering in reading order.

    A line joins an open bubble when it is horizontally aligned with the
    bubble's centroid (``horizontal_gap``) and vertically close to it
    (``vertical_gap``). Vertical closeness is the smaller of the distance to
    the running centroid and to the nearest line already in the bubble, so a
    long multi-line message keeps growing after its centroid falls behind.

    Two messages from the same sender with no visible gap between them can
    merge; that is an accepted limitation of proximity grouping.
    """

    def __init__(self, config: Optional[ClusterConfig] = None):
        self.config = config or ClusterConfig()
        self.logger = logging.getLogger(__name__)

    def cluster(self, lines: List[ContentLine], logger=None) -> List[MessageBubble]:
        log = logger or self.logger
        bubbles: List[MessageBubble] = []

        for line in lines:
            target = self._find_bubble(bubbles, line)
            if target is None:
                bubbles.append(MessageBubble.seed(line))
            else:
                target.add_line(line)

        log.debug(f"Clustered {len(lines)} lines into {len(bubbles)} bubbles")
        return bubbles

    def _find_bubble(self, bubbles: List[MessageBubble], line: ContentLine) -> Optional[MessageBubble]:
        best: Optional[MessageBubble] = None
        best_gap = float("inf")
        for bubble in bubbles:
            if abs(line.x - bubble.centroid_x) >= self.config.horizontal_gap:
                continue
            gap = self.vertical_distance(bubble, line)
            if gap < self.config.vertical_gap and gap < best_gap:
                best, best_gap = bubble, gap
        return best

    @staticmethod
    def vertical_distance(bubble: MessageBubble, line: ContentLine) -> float:
        nearest_line = min(abs(line.y - ln.y) for ln in bubble.lines)
        return min(abs(line.y - bubble.centroid_y), nearest_line)
