"""
Tests for transcript export.
"""
import csv
import json

import pytest

from models.config import OutputConfig
from models.data_models import ExtractedMessage, TranscriptResult
from services.storage_manager import StorageManager


@pytest.fixture
def transcript():
    return TranscriptResult(
        request_id="req-1",
        messages=[
            ExtractedMessage(text="Hey, you free later?", speaker="Ali", y=60),
            ExtractedMessage(text="Yeah after 6", speaker="Sam", y=110),
        ],
        raw_text="10:32\nHey, you free later?\nYeah after 6",
        image_width=400,
        image_height=300,
    )


def test_json_export(tmp_path, transcript):
    path = StorageManager(OutputConfig(directory=str(tmp_path))).save_transcript(transcript, "chat")
    assert path.name.startswith("chat_") and path.suffix == ".json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["messages"] == [
        {"text": "Hey, you free later?", "speaker": "Ali"},
        {"text": "Yeah after 6", "speaker": "Sam"},
    ]
    assert data["imageWidth"] == 400
    assert "message" not in data


def test_json_positions_are_optional(tmp_path, transcript):
    storage = StorageManager(OutputConfig(directory=str(tmp_path), include_positions=True))
    data = json.loads(storage.save_transcript(transcript).read_text(encoding="utf-8"))
    assert data["messages"][0]["y"] == 60


def test_txt_export_is_conversation_text(tmp_path, transcript):
    storage = StorageManager(OutputConfig(format="txt", directory=str(tmp_path)))
    text = storage.save_transcript(transcript).read_text(encoding="utf-8")
    assert text == "Ali: Hey, you free later?\nSam: Yeah after 6\n"


def test_csv_export(tmp_path, transcript):
    storage = StorageManager(OutputConfig(format="csv", directory=str(tmp_path)))
    with storage.save_transcript(transcript).open(encoding="utf-8", newline="") as f:
        rows = list(csv.DictReader(f))
    assert rows == [
        {"speaker": "Ali", "text": "Hey, you free later?"},
        {"speaker": "Sam", "text": "Yeah after 6"},
    ]


def test_markdown_export_of_empty_transcript(tmp_path):
    empty = TranscriptResult(request_id="r", messages=[], info="No text detected in image")
    storage = StorageManager(OutputConfig(format="md", directory=str(tmp_path)))
    text = storage.save_transcript(empty).read_text(encoding="utf-8")
    assert text.startswith("# Chat Transcript")
    assert "No text detected in image" in text


def test_multiple_formats_and_no_overwrite(tmp_path, transcript):
    storage = StorageManager(OutputConfig(directory=str(tmp_path), formats=["json", "md", "JSON"]))
    first = storage.save(transcript, "chat")
    second = storage.save(transcript, "chat")
    assert [p.suffix for p in first] == [".json", ".md"]
    assert len(set(first + second)) == 4


def test_output_directory_is_created(tmp_path, transcript):
    target = tmp_path / "nested" / "out"
    StorageManager(OutputConfig(directory=str(target))).save_transcript(transcript)
    assert target.is_dir()


def test_unknown_format_rejected(tmp_path, transcript):
    storage = StorageManager(OutputConfig(format="xml", directory=str(tmp_path)))
    with pytest.raises(ValueError):
        storage.save_transcript(transcript)
