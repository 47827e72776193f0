"""
Colour classifier: tells sent bubbles from received ones by background colour.

The image is tiled into square windows. Each window counts pixels in three
buckets (sent green, received dark, received light) and is tagged when one
bucket dominates. Bubbles then take the class of the window under their
centroid, or of the nearest window within ``match_radius``.
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from models.config import ColorConfig
from models.data_models import Classification, ColorClass, ColorRegion, MessageBubble
from services.classifiers import BubbleClassifier, ClassificationContext


class ColorClassifier(BubbleClassifier):
    method = "color"

    def __init__(self, config: Optional[ColorConfig] = None):
        self.config = config or ColorConfig()
        self.logger = logging.getLogger(__name__)

    def bucket_masks(self, pixels: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return uint8 masks (sent, received-dark, received-light) for an RGB array."""
        cfg = self.config
        rgb = pixels.astype(np.int16)
        r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]

        sent = (g > r + cfg.sent_margin) & (g > b + cfg.sent_margin) & (g > cfg.sent_min_green)

        channel_max = rgb.max(axis=2)
        channel_min = rgb.min(axis=2)
        dark = (channel_max < cfg.dark_max) & (rgb.sum(axis=2) > cfg.dark_min_sum)
        light = (channel_min > cfg.light_min) & ((channel_max - channel_min) < cfg.light_spread)

        return sent.astype(np.uint8), dark.astype(np.uint8), light.astype(np.uint8)

    def detect_regions(self, pixels: Optional[np.ndarray], logger=None) -> List[ColorRegion]:
        """Tile the image and return the windows with a clear sent/received signature."""
        log = logger or self.logger
        if pixels is None or pixels.ndim != 3 or pixels.shape[2] < 3:
            return []

        cfg = self.config
        sent, dark, light = self.bucket_masks(pixels[..., :3])
        height, width = sent.shape
        step = cfg.window_size
        regions: List[ColorRegion] = []

        for y in range(0, height, step):
            for x in range(0, width, step):
                y2, x2 = min(y + step, height), min(x + step, width)
                total = (y2 - y) * (x2 - x)
                if total < cfg.min_window_pixels:
                    continue
                label = self._label_window(
                    cv2.countNonZero(sent[y:y2, x:x2]) / total,
                    cv2.countNonZero(dark[y:y2, x:x2]) / total,
                    cv2.countNonZero(light[y:y2, x:x2]) / total,
                )
                if label is ColorClass.UNKNOWN:
                    continue
                regions.append(ColorRegion(x=x, y=y, width=x2 - x, height=y2 - y,
                                           is_sent_color=label is ColorClass.SENT))

        sent_count = sum(1 for r in regions if r.is_sent_color)
        log.debug(f"Colour sampling found {sent_count} sent and {len(regions) - sent_count} received regions")
        return regions

    def _label_window(self, sent_ratio: float, dark_ratio: float, light_ratio: float) -> ColorClass:
        if sent_ratio > self.config.sent_ratio:
            return ColorClass.SENT
        if dark_ratio > self.config.received_ratio or light_ratio > self.config.received_ratio:
            return ColorClass.RECEIVED
        return ColorClass.UNKNOWN

    def classify_point(self, x: float, y: float, regions: Sequence[ColorRegion]) -> ColorClass:
        """Colour class at a point: containing region first, then nearest within radius."""
        containing = [r for r in regions if r.contains(x, y)]
        if containing:
            return min(containing, key=lambda r: _distance(r.center, (x, y))).color_class

        nearest: Optional[ColorRegion] = None
        nearest_dist = float("inf")
        for region in regions:
            d = _distance(region.center, (x, y))
            if d < nearest_dist:
                nearest, nearest_dist = region, d
        if nearest is not None and nearest_dist <= self.config.match_radius:
            return nearest.color_class
        return ColorClass.UNKNOWN

    def prepare(self, bubbles: Sequence[MessageBubble], context: ClassificationContext) -> None:
        if not context.regions:
            context.regions = self.detect_regions(context.pixels)

    def classify(self, bubble: MessageBubble, context: ClassificationContext) -> Optional[Classification]:
        color = self.classify_point(bubble.centroid_x, bubble.centroid_y, context.regions)
        bubble.color_class = color
        if color is ColorClass.UNKNOWN:
            return None
        return Classification(method=self.method, color_class=color, side=context.side_of(bubble))

    def describe_point(self, pixels: np.ndarray, x: int, y: int) -> Dict[str, object]:
        """Average colour and bucket ratios of the window centred on ``(x, y)``."""
        half = self.config.window_size // 2
        height, width = pixels.shape[:2]
        x1, y1 = max(0, int(x) - half), max(0, int(y) - half)
        x2, y2 = min(width, int(x) + half), min(height, int(y) + half)
        window = pixels[y1:y2, x1:x2, :3]
        if window.size == 0:
            return {"x": int(x), "y": int(y), "avg_rgb": None, "color_class": ColorClass.UNKNOWN.value}

        sent, dark, light = self.bucket_masks(window)
        total = float(sent.size)
        ratios = (
            cv2.countNonZero(sent) / total,
            cv2.countNonZero(dark) / total,
            cv2.countNonZero(light) / total,
        )
        avg = window.reshape(-1, 3).mean(axis=0)
        return {
            "x": int(x),
            "y": int(y),
            "avg_rgb": [int(round(v)) for v in avg],
            "sent_ratio": round(ratios[0], 3),
            "dark_ratio": round(ratios[1], 3),
            "light_ratio": round(ratios[2], 3),
            "color_class": self._label_window(*ratios).value,
        }


def _distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return float(np.hypot(a[0] - b[0], a[1] - b[1]))
