"""
Tests for colour-region detection and bubble colour classification.
"""
import unittest

import numpy as np

from models.config import ColorConfig
from models.data_models import ColorClass, ColorRegion, ContentLine, MessageBubble
from services.classifiers import ClassificationContext
from services.color_classifier import ColorClassifier


WHATSAPP_GREEN = (37, 211, 102)
LIGHT_GRAY = (235, 235, 235)
DARK_BUBBLE = (38, 45, 49)
MID_GRAY = (128, 128, 128)


def canvas(width=300, height=300, color=MID_GRAY):
    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    pixels[:, :] = color
    return pixels


def bubble_at(x, y, text="hello"):
    return MessageBubble.seed(ContentLine(text, x=x, y=y))


class TestColorClassifier(unittest.TestCase):
    def setUp(self):
        self.classifier = ColorClassifier()

    def test_green_window_is_sent(self):
        pixels = canvas()
        pixels[0:30, 0:30] = WHATSAPP_GREEN
        regions = self.classifier.detect_regions(pixels)
        self.assertEqual(regions, [ColorRegion(x=0, y=0, width=30, height=30, is_sent_color=True)])

    def test_light_and_dark_windows_are_received(self):
        pixels = canvas()
        pixels[0:30, 0:30] = LIGHT_GRAY
        pixels[60:90, 60:90] = DARK_BUBBLE
        regions = self.classifier.detect_regions(pixels)
        self.assertEqual(len(regions), 2)
        self.assertTrue(all(not r.is_sent_color for r in regions))
        self.assertEqual({(r.x, r.y) for r in regions}, {(0, 0), (60, 60)})

    def test_near_black_is_not_received_dark(self):
        pixels = canvas(color=(5, 5, 5))
        self.assertEqual(self.classifier.detect_regions(pixels), [])

    def test_mid_gray_background_yields_no_regions(self):
        self.assertEqual(self.classifier.detect_regions(canvas()), [])

    def test_sent_ratio_threshold(self):
        pixels = canvas(width=30, height=30)
        # 10 of 30 rows green: 33% > 30%
        pixels[0:10, :] = WHATSAPP_GREEN
        self.assertTrue(self.classifier.detect_regions(pixels)[0].is_sent_color)
        # 9 of 30 rows: 30%, not above the threshold
        pixels = canvas(width=30, height=30)
        pixels[0:9, :] = WHATSAPP_GREEN
        self.assertEqual(self.classifier.detect_regions(pixels), [])

    def test_edge_windows_are_clipped_and_tiny_ones_skipped(self):
        pixels = canvas(width=65, height=31, color=LIGHT_GRAY)
        regions = self.classifier.detect_regions(pixels)
        # x: 0,30 full width, 60 clipped to 5 px; bottom row of height 1 has
        # 30 and 5 pixels: the 5-pixel corner falls below the minimum
        widths = sorted((r.x, r.y, r.width, r.height) for r in regions)
        self.assertIn((60, 0, 5, 30), widths)
        self.assertIn((0, 30, 30, 1), widths)
        self.assertNotIn((60, 30, 5, 1), widths)

    def test_bubble_inside_green_region_is_sent(self):
        pixels = canvas()
        # 90% green region around the centroid
        pixels[90:120, 180:210] = WHATSAPP_GREEN
        pixels[90:93, 180:210] = MID_GRAY
        context = ClassificationContext(pixels=pixels, width=300, height=300)
        bubble = bubble_at(195, 100)
        self.classifier.prepare([bubble], context)
        result = self.classifier.classify(bubble, context)
        self.assertIsNotNone(result)
        self.assertEqual(result.color_class, ColorClass.SENT)
        self.assertEqual(result.method, "color")
        self.assertEqual(bubble.color_class, ColorClass.SENT)

    def test_nearest_region_within_radius(self):
        regions = [ColorRegion(0, 0, 30, 30, is_sent_color=False)]
        self.assertEqual(self.classifier.classify_point(80, 15, regions), ColorClass.RECEIVED)
        self.assertEqual(self.classifier.classify_point(200, 15, regions), ColorClass.UNKNOWN)

    def test_unknown_bubble_defers(self):
        context = ClassificationContext(pixels=canvas(), width=300, height=300)
        bubble = bubble_at(150, 150)
        self.classifier.prepare([bubble], context)
        self.assertIsNone(self.classifier.classify(bubble, context))
        self.assertEqual(bubble.color_class, ColorClass.UNKNOWN)

    def test_missing_pixels_yield_no_regions(self):
        self.assertEqual(self.classifier.detect_regions(None), [])

    def test_window_size_is_configurable(self):
        classifier = ColorClassifier(ColorConfig(window_size=20))
        pixels = canvas(width=40, height=40, color=LIGHT_GRAY)
        self.assertEqual(len(classifier.detect_regions(pixels)), 4)

    def test_describe_point_reports_ratios(self):
        pixels = canvas(color=WHATSAPP_GREEN)
        info = self.classifier.describe_point(pixels, 100, 100)
        self.assertEqual(info["avg_rgb"], list(WHATSAPP_GREEN))
        self.assertEqual(info["sent_ratio"], 1.0)
        self.assertEqual(info["color_class"], "sent")


if __name__ == "__main__":
    unittest.main()
