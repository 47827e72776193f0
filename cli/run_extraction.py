import argparse
import json
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.config import OutputConfig
from models.data_models import MAPPING_CHOICES, SpeakerMapping
from models.errors import ConfigurationError, OCRPipelineError
from services.config_manager import ConfigManager
from services.logging_manager import LoggingManager
from services.ocr_pipeline import ImageInput, OCRPipeline
from services.storage_manager import StorageManager
from services.transcript_assembler import TranscriptAssembler


def _read_images(paths, log):
    """Load image files; unreadable paths are logged and counted as failures."""
    items, failures = [], 0
    for p in paths:
        path = Path(p)
        try:
            items.append(ImageInput(data=path.read_bytes(), filename=path.name))
        except OSError as e:
            log.error(f"{p}: cannot read image ({e.strerror or e})")
            failures += 1
    return items, failures


def main(argv=None) -> int:
    """
    Extract transcripts from chat screenshots on disk.

    Each image runs through the full pipeline; transcripts are exported with
    StorageManager (one file per image and format) unless --dry-run is given.
    """
    parser = argparse.ArgumentParser(description="Chat screenshot transcript extraction")
    parser.add_argument("images", nargs="+", help="screenshot files to process")
    parser.add_argument("--side", type=str.upper, choices=MAPPING_CHOICES, default="RIGHT",
                        help="where your own messages are: LEFT, RIGHT, or GREEN (green bubbles are yours)")
    parser.add_argument("--me", required=True, help="your name in the transcript")
    parser.add_argument("--them", required=True, help="the other person's name")
    parser.add_argument("--config", help="path to YAML/JSON config")
    parser.add_argument("--format", choices=["json", "csv", "txt", "md"], help="override output format")
    parser.add_argument("--formats", help="multi formats output, comma-separated, e.g. json,txt")
    parser.add_argument("--outdir", help="override output directory")
    parser.add_argument("--dry-run", action="store_true", help="print transcripts without saving")
    parser.add_argument("--debug-colors", action="store_true", help="print sampled bubble colours instead of transcripts")
    args = parser.parse_args(argv)

    log = logging.getLogger(__name__)
    cfg_mgr = ConfigManager(args.config)
    app_cfg = cfg_mgr.get_config()
    LoggingManager().setup(app_cfg)

    try:
        cfg_mgr.require_credentials(app_cfg)
        mapping = SpeakerMapping(me_name=args.me, them_name=args.them, my_side_or_color=args.side)
    except (ConfigurationError, ValueError) as e:
        log.error(str(e))
        return 2

    pipeline = OCRPipeline.from_config(app_cfg)
    items, failures = _read_images(args.images, log)

    if args.debug_colors:
        for item in items:
            try:
                report = pipeline.debug_colors(item.data)
            except OCRPipelineError as e:
                log.error(f"{item.filename}: {e}")
                failures += 1
                continue
            print(json.dumps({"image": item.filename, "bubbles": report}, ensure_ascii=False, indent=2))
        return 1 if failures else 0

    results = pipeline.process_batch(items, mapping)

    storage = None
    if not args.dry_run:
        formats = [f.strip().lower() for f in args.formats.split(",") if f.strip()] if args.formats else list(app_cfg.output.formats)
        storage = StorageManager(OutputConfig(
            format=(args.format or app_cfg.output.format),
            directory=(args.outdir or app_cfg.output.directory),
            formats=formats,
            include_positions=app_cfg.output.include_positions,
        ))

    for slot in results:
        if not slot.ok:
            failures += 1
            log.error(f"{slot.filename}: {slot.error}")
            continue
        result = slot.result
        if args.dry_run:
            print(f"== {slot.filename} ({len(result.messages)} messages)")
            print(result.info or TranscriptAssembler.to_conversation_text(result.messages))
            continue
        prefix = Path(slot.filename or "transcript").stem
        for path in storage.save(result, filename_prefix=prefix):
            log.info(f"{slot.filename}: wrote {path}")

    log.info(f"Processed {len(results)} images, {failures} failed")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
