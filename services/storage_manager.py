"""
Storage manager for exporting extracted transcripts to files.
Supports JSON, CSV, TXT (``Speaker: text``) and Markdown formats.
"""
import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from models.config import OutputConfig
from models.data_models import ExtractedMessage, TranscriptResult


SUPPORTED_FORMATS = ("json", "csv", "txt", "md")


class StorageManager:
    """
    Handles persistence of transcripts to disk.
    """

    def __init__(self, output_config: Optional[OutputConfig] = None):
        self.logger = logging.getLogger(__name__)
        self.config = output_config or OutputConfig()
        self._ensure_output_dir()

    def _ensure_output_dir(self) -> None:
        """Create output directory if it does not exist."""
        out_dir = Path(self.config.directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        self.logger.debug(f"Output directory ready: {out_dir}")

    def _generate_filename(self, prefix: str, ext: str) -> Path:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = Path(self.config.directory) / f"{prefix}_{ts}.{ext}"
        # Several images can finish within the same second
        counter = 1
        while path.exists():
            path = Path(self.config.directory) / f"{prefix}_{ts}_{counter}.{ext}"
            counter += 1
        return path

    def _message_to_dict(self, msg: ExtractedMessage) -> dict:
        return msg.to_dict(include_position=self.config.include_positions)

    def _write_transcript(self, result: TranscriptResult, fmt: str, filename_prefix: str) -> Path:
        """Write one transcript to a single file in the given format."""
        fmt = (fmt or "json").lower()
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported output format: {fmt}")

        messages = result.messages
        path = self._generate_filename(filename_prefix, fmt)

        if fmt == "json":
            data = {
                "requestId": result.request_id,
                "messages": [self._message_to_dict(m) for m in messages],
                "rawText": result.raw_text,
                "imageWidth": result.image_width,
                "imageHeight": result.image_height,
            }
            if result.info:
                data["message"] = result.info
            with path.open("w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)

        elif fmt == "csv":
            fieldnames = ["speaker", "text"] + (["y"] if self.config.include_positions else [])
            with path.open("w", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
                writer.writeheader()
                for m in messages:
                    writer.writerow(self._message_to_dict(m))

        elif fmt == "txt":
            with path.open("w", encoding="utf-8") as f:
                for m in messages:
                    f.write(self._format_txt_message(m) + "\n")

        else:
            with path.open("w", encoding="utf-8") as f:
                f.write("# Chat Transcript\n\n")
                if not messages and result.info:
                    f.write(f"_{result.info}_\n")
                for m in messages:
                    f.write(self._format_markdown_message(m) + "\n")

        self.logger.info(f"Saved {len(messages)} messages to {path}")
        return path

    def save_transcript(self, result: TranscriptResult, filename_prefix: str = "transcript") -> Path:
        """Save a transcript according to the configured format.

        Returns the path of the written file.
        """
        return self._write_transcript(result, self.config.format, filename_prefix)

    def save_transcript_multiple(self, result: TranscriptResult, filename_prefix: str, formats: List[str]) -> List[Path]:
        """Save a transcript in several formats; duplicate formats are written once."""
        paths: List[Path] = []
        seen = set()
        for fmt in formats:
            key = (fmt or "").lower()
            if key in seen:
                continue
            seen.add(key)
            paths.append(self._write_transcript(result, key, filename_prefix))
        return paths

    def save(self, result: TranscriptResult, filename_prefix: str = "transcript") -> List[Path]:
        """Save using ``formats`` when configured, else the single ``format``."""
        if self.config.formats:
            return self.save_transcript_multiple(result, filename_prefix, self.config.formats)
        return [self.save_transcript(result, filename_prefix)]

    @staticmethod
    def _format_txt_message(m: ExtractedMessage) -> str:
        return f"{m.speaker}: {m.text}"

    @staticmethod
    def _format_markdown_message(m: ExtractedMessage) -> str:
        return f"- **{m.speaker}**: {m.text}"
