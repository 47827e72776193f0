"""
Tests for the Read API client against a mocked requests session.
"""
import threading
import time
from unittest.mock import Mock

import pytest
import requests

from models.config import AzureConfig
from models.errors import (
    InvalidImageError,
    OCRCancelledError,
    OCRTimeoutError,
    ProviderAuthError,
    ProviderProcessingFailedError,
    ProviderRequestError,
    UnsupportedFormatError,
)
from services.ocr_client import AzureReadClient

from ocr_fakes import line_box


OPERATION_URL = "https://example.cognitiveservices.azure.com/vision/v3.2/read/analyzeResults/abc"


def response(status=200, json_body=None, headers=None):
    resp = Mock()
    resp.status_code = status
    resp.headers = headers or {}
    if json_body is None:
        resp.json.side_effect = ValueError("no json")
    else:
        resp.json.return_value = json_body
    return resp


def accepted():
    return response(202, headers={"Operation-Location": OPERATION_URL})


def succeeded(*pages):
    return response(200, {
        "status": "succeeded",
        "analyzeResult": {"readResults": [{"lines": lines} for lines in pages]},
    })


def running():
    return response(200, {"status": "running"})


@pytest.fixture
def azure_config():
    return AzureConfig(
        endpoint="https://example.cognitiveservices.azure.com/",
        subscription_key="secret",
        poll_interval=0.0,
        max_backoff=0.0,
        max_poll_attempts=5,
    )


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


class TestSubmit:
    def test_posts_bytes_with_key_header(self, azure_config, session):
        session.post.return_value = accepted()
        session.get.return_value = succeeded([])
        AzureReadClient(azure_config, session).read(b"image-bytes")

        args, kwargs = session.post.call_args
        assert args[0] == "https://example.cognitiveservices.azure.com/vision/v3.2/read/analyze"
        assert kwargs["data"] == b"image-bytes"
        assert kwargs["headers"]["Ocp-Apim-Subscription-Key"] == "secret"
        assert kwargs["headers"]["Content-Type"] == "application/octet-stream"
        assert session.get.call_args[0][0] == OPERATION_URL

    def test_missing_operation_location(self, azure_config, session):
        session.post.return_value = response(202)
        with pytest.raises(ProviderRequestError):
            AzureReadClient(azure_config, session).read(b"x")

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_errors(self, azure_config, session, status, caplog):
        session.post.return_value = response(status, {"error": {"code": "401", "message": "Access denied"}})
        with pytest.raises(ProviderAuthError):
            AzureReadClient(azure_config, session).read(b"x")
        assert any(r.levelname == "ERROR" for r in caplog.records)

    def test_invalid_image_format(self, azure_config, session):
        session.post.return_value = response(
            400,
            {"error": {"code": "InvalidRequest", "message": "Input data is not a valid image.",
                       "innererror": {"code": "InvalidImageFormat"}}},
        )
        with pytest.raises(UnsupportedFormatError):
            AzureReadClient(azure_config, session).read(b"x")

    def test_error_code_header(self, azure_config, session):
        session.post.return_value = response(400, headers={"ms-azure-ai-errorcode": "InvalidImage"})
        with pytest.raises(UnsupportedFormatError):
            AzureReadClient(azure_config, session).read(b"x")

    def test_invalid_image_size(self, azure_config, session):
        session.post.return_value = response(400, {"error": {"code": "InvalidImageSize", "message": "too big"}})
        with pytest.raises(InvalidImageError):
            AzureReadClient(azure_config, session).read(b"x")

    def test_other_client_error(self, azure_config, session):
        session.post.return_value = response(404, {"error": {"message": "Resource not found"}})
        with pytest.raises(ProviderRequestError):
            AzureReadClient(azure_config, session).read(b"x")

    def test_transient_submit_is_retried(self, azure_config, session):
        session.post.side_effect = [response(503), requests.ConnectionError("reset"), accepted()]
        session.get.return_value = succeeded([])
        AzureReadClient(azure_config, session).read(b"x")
        assert session.post.call_count == 3

    def test_submit_retries_exhausted(self, azure_config, session):
        session.post.return_value = response(429)
        with pytest.raises(ProviderRequestError):
            AzureReadClient(azure_config, session).read(b"x")
        assert session.post.call_count == azure_config.submit_retries + 1

    def test_mid_transfer_submit_error_is_retried(self, azure_config, session):
        session.post.side_effect = [requests.exceptions.ContentDecodingError("garbled"), accepted()]
        session.get.return_value = succeeded([])
        assert AzureReadClient(azure_config, session).read(b"x") == []
        assert session.post.call_count == 2

    def test_persistent_network_errors_become_request_error(self, azure_config, session):
        session.post.side_effect = requests.exceptions.ChunkedEncodingError("cut off")
        with pytest.raises(ProviderRequestError) as exc:
            AzureReadClient(azure_config, session).read(b"x")
        assert isinstance(exc.value.original_error, requests.exceptions.ChunkedEncodingError)


class TestPoll:
    def test_lines_from_every_page(self, azure_config, session):
        session.post.return_value = accepted()
        session.get.side_effect = [
            response(200, {"status": "notStarted"}),
            running(),
            succeeded(
                [{"text": "Hello", "boundingBox": line_box(10, 20)}],
                [{"text": "Page two", "boundingBox": line_box(30, 40)}],
            ),
        ]
        lines = AzureReadClient(azure_config, session).read(b"x")
        assert [ln.text for ln in lines] == ["Hello", "Page two"]
        assert [ln.page for ln in lines] == [0, 1]
        assert (lines[1].left, lines[1].top) == (30, 40)

    def test_failed_job_stops_immediately(self, azure_config, session):
        session.post.return_value = accepted()
        session.get.return_value = response(200, {"status": "failed"})
        with pytest.raises(ProviderProcessingFailedError):
            AzureReadClient(azure_config, session).read(b"x")
        assert session.get.call_count == 1

    def test_attempt_budget_exhausted(self, azure_config, session):
        session.post.return_value = accepted()
        session.get.return_value = running()
        with pytest.raises(OCRTimeoutError):
            AzureReadClient(azure_config, session).read(b"x")
        assert session.get.call_count == azure_config.max_poll_attempts

    def test_transient_poll_failure_does_not_spend_attempt(self, azure_config, session):
        azure_config.max_poll_attempts = 1
        session.post.return_value = accepted()
        session.get.side_effect = [
            response(429, headers={"Retry-After": "0"}),
            requests.Timeout("slow"),
            succeeded([{"text": "ok then", "boundingBox": line_box(0, 0)}]),
        ]
        lines = AzureReadClient(azure_config, session).read(b"x")
        assert [ln.text for ln in lines] == ["ok then"]

    def test_persistent_transient_failures_spend_the_budget(self, azure_config, session):
        azure_config.max_poll_attempts = 2
        session.post.return_value = accepted()
        session.get.return_value = response(500)
        with pytest.raises(OCRTimeoutError):
            AzureReadClient(azure_config, session).read(b"x")
        assert session.get.call_count == 2 * (azure_config.transient_retries + 1)

    def test_mid_transfer_poll_error_is_transient(self, azure_config, session):
        session.post.return_value = accepted()
        session.get.side_effect = [
            requests.exceptions.ChunkedEncodingError("blip"),
            succeeded([{"text": "hello there", "boundingBox": line_box(0, 0)}]),
        ]
        lines = AzureReadClient(azure_config, session).read(b"x")
        assert [ln.text for ln in lines] == ["hello there"]

    def test_retry_after_cannot_outlast_the_deadline(self, azure_config, session):
        azure_config.poll_interval = 0.05
        azure_config.max_poll_attempts = 4
        azure_config.max_backoff = 10.0
        session.post.return_value = accepted()
        session.get.return_value = response(429, headers={"Retry-After": "1"})

        started = time.monotonic()
        with pytest.raises(OCRTimeoutError):
            AzureReadClient(azure_config, session).read(b"x")
        assert time.monotonic() - started <= 0.5

    def test_status_request_timeout_is_clamped_to_time_left(self, azure_config, session):
        azure_config.poll_interval = 0.05
        azure_config.max_poll_attempts = 2
        session.post.return_value = accepted()
        session.get.return_value = succeeded([])
        AzureReadClient(azure_config, session).read(b"x")
        assert session.get.call_args.kwargs["timeout"] <= 0.1

    def test_unparsable_status_is_transient(self, azure_config, session):
        session.post.return_value = accepted()
        session.get.side_effect = [response(200), succeeded([])]
        assert AzureReadClient(azure_config, session).read(b"x") == []

    def test_auth_error_while_polling(self, azure_config, session):
        session.post.return_value = accepted()
        session.get.return_value = response(401)
        with pytest.raises(ProviderAuthError):
            AzureReadClient(azure_config, session).read(b"x")

    def test_lines_without_boxes_are_skipped(self):
        payload = {"analyzeResult": {"readResults": [{"lines": [
            {"text": "good", "boundingBox": line_box(0, 0)},
            {"text": "no box"},
            {"text": "", "boundingBox": line_box(0, 0)},
        ]}]}}
        assert [ln.text for ln in AzureReadClient.parse_lines(payload)] == ["good"]


class TestCancellation:
    def test_cancelled_before_submit(self, azure_config, session):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OCRCancelledError):
            AzureReadClient(azure_config, session).read(b"x", cancel_event=cancel)
        session.post.assert_not_called()

    def test_cancel_stops_polling_promptly(self, azure_config, session):
        azure_config.poll_interval = 5.0
        azure_config.max_poll_attempts = 60
        cancel = threading.Event()
        session.post.return_value = accepted()
        session.get.return_value = running()

        timer = threading.Timer(0.2, cancel.set)
        timer.start()
        try:
            with pytest.raises(OCRCancelledError):
                AzureReadClient(azure_config, session).read(b"x", cancel_event=cancel)
        finally:
            timer.cancel()
        assert session.get.call_count == 0
