"""
Screenshot-to-transcript pipeline.

Wires the stages together for one image (``process``) or several
(``process_batch``):

    preprocess -> OCR -> noise filter -> clustering -> classifier chain
    -> speaker resolution -> transcript assembly
"""
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

from models.config import AppConfig
from models.data_models import BatchItemResult, SpeakerMapping, TranscriptResult
from models.errors import OCRCancelledError, OCRPipelineError
from services.bubble_clusterer import BubbleClusterer
from services.classifiers import ClassificationContext, select_chain
from services.color_classifier import ColorClassifier
from services.image_preprocessor import ImagePreprocessor
from services.logging_manager import request_logger
from services.noise_filter import NoiseFilter
from services.ocr_client import AzureReadClient
from services.position_classifier import PositionClassifier
from services.speaker_resolver import SpeakerResolver
from services.transcript_assembler import TranscriptAssembler


NO_TEXT_MESSAGE = "No text detected in image"


@dataclass
class ImageInput:
    """One image of a batch request."""
    data: bytes
    content_type: Optional[str] = None
    filename: Optional[str] = None


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


class OCRPipeline:
    """Runs screenshots through every stage and returns speaker-attributed transcripts."""

    def __init__(self, config: AppConfig, ocr_client=None, preprocessor: Optional[ImagePreprocessor] = None):
        self.config = config
        self.ocr_client = ocr_client or AzureReadClient(config.azure)
        self.preprocessor = preprocessor or ImagePreprocessor(config.preprocess)
        self.noise_filter = NoiseFilter(config.noise)
        self.clusterer = BubbleClusterer(config.cluster)
        self.color_classifier = ColorClassifier(config.color)
        self.position_classifier = PositionClassifier(config.position)
        self.resolver = SpeakerResolver(config.pipeline.default_owner_side)
        self.assembler = TranscriptAssembler()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config: AppConfig, session=None) -> "OCRPipeline":
        return cls(config, ocr_client=AzureReadClient(config.azure, session=session))

    def process(self, data: bytes, mapping: SpeakerMapping, content_type: Optional[str] = None,
                cancel_event: Optional[threading.Event] = None, request_id: Optional[str] = None) -> TranscriptResult:
        """
        Extract a transcript from one screenshot.

        Args:
            data: Raw image bytes as uploaded
            mapping: Who is who in the screenshot
            content_type: Declared MIME type of the upload
            cancel_event: Set by the caller to abandon the request
            request_id: Correlation id for logs; generated when omitted

        Returns:
            TranscriptResult: Ordered messages; empty with ``info`` set when no text was found

        Raises:
            OCRPipelineError: Any hard failure; no partial transcript is returned
        """
        request_id = request_id or new_request_id()
        log = request_logger(__name__, request_id)
        cancel = cancel_event or threading.Event()
        if cancel.is_set():
            raise OCRCancelledError("OCR request cancelled by caller")

        log.info(f"Processing image ({len(data or b'')} bytes, mapping={mapping.my_side_or_color})")
        prepared = self.preprocessor.prepare(data, content_type, logger=log)
        raw_lines = self.ocr_client.read(prepared.data, cancel_event=cancel, logger=log)
        raw_text = "\n".join(line.text for line in raw_lines)

        result = TranscriptResult(
            request_id=request_id,
            messages=[],
            raw_text=raw_text,
            image_width=prepared.width,
            image_height=prepared.height,
        )

        content = self.noise_filter.filter(raw_lines, logger=log)
        if not content:
            log.info(NO_TEXT_MESSAGE)
            result.info = NO_TEXT_MESSAGE
            return result

        bubbles = self.clusterer.cluster(content, logger=log)
        context = ClassificationContext(pixels=prepared.pixels, width=prepared.width, height=prepared.height)
        chain = select_chain(
            mapping,
            self.color_classifier,
            self.position_classifier,
            use_color_with_side_mapping=self.config.pipeline.use_color_with_side_mapping,
        )
        classifications = chain.classify_all(bubbles, context, logger=log)
        labeled = self.resolver.resolve(bubbles, classifications, mapping, logger=log)
        result.messages = self.assembler.assemble(labeled)

        log.info(f"Extracted {len(result.messages)} messages from {len(raw_lines)} OCR lines")
        return result

    def debug_colors(self, data: bytes, content_type: Optional[str] = None,
                     cancel_event: Optional[threading.Event] = None) -> List[dict]:
        """Report the sampled colour under every bubble, for tuning the colour thresholds."""
        log = request_logger(__name__, new_request_id())
        prepared = self.preprocessor.prepare(data, content_type, logger=log)
        raw_lines = self.ocr_client.read(prepared.data, cancel_event=cancel_event, logger=log)
        bubbles = self.clusterer.cluster(self.noise_filter.filter(raw_lines, logger=log), logger=log)
        regions = self.color_classifier.detect_regions(prepared.pixels, logger=log)

        report = []
        for bubble in bubbles:
            entry = self.color_classifier.describe_point(prepared.pixels, bubble.centroid_x, bubble.centroid_y)
            entry["text"] = bubble.text
            entry["region_class"] = self.color_classifier.classify_point(
                bubble.centroid_x, bubble.centroid_y, regions).value
            report.append(entry)
        return report

    def process_batch(self, items: Sequence[ImageInput], mapping: SpeakerMapping,
                      cancel_event: Optional[threading.Event] = None) -> List[BatchItemResult]:
        """
        Process several screenshots with bounded concurrency.

        A failing image is reported in its own slot; siblings are unaffected.
        Results keep the input order.
        """
        cancel = cancel_event or threading.Event()
        workers = max(1, min(self.config.pipeline.max_concurrency, len(items) or 1))
        self.logger.info(f"Processing batch of {len(items)} images with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                executor.submit(self._process_item, index, item, mapping, cancel)
                for index, item in enumerate(items)
            ]
            results = [future.result() for future in futures]

        ok = sum(1 for r in results if r.ok)
        self.logger.info(f"Batch finished: {ok}/{len(results)} images succeeded")
        return results

    def _process_item(self, index: int, item: ImageInput, mapping: SpeakerMapping,
                      cancel: threading.Event) -> BatchItemResult:
        slot = BatchItemResult(index=index, filename=item.filename)
        request_id = new_request_id()
        try:
            slot.result = self.process(item.data, mapping, item.content_type, cancel_event=cancel, request_id=request_id)
        except OCRPipelineError as e:
            request_logger(__name__, request_id).warning(f"Image {index} ({item.filename or 'unnamed'}) failed: {e}")
            slot.error = e
        except Exception as e:
            request_logger(__name__, request_id).exception(f"Unexpected error processing image {index}")
            slot.error = e
        return slot
