"""
Client for the Azure Computer Vision Read API (v3.2).

The Read API is asynchronous: the image is submitted once, the service answers
``202 Accepted`` with an ``Operation-Location`` URL, and that URL is polled
until the job reports ``succeeded`` or ``failed``.
"""
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from models.config import AzureConfig
from models.data_models import RawTextLine
from models.errors import (
    InvalidImageError,
    OCRCancelledError,
    OCRTimeoutError,
    ProviderAuthError,
    ProviderProcessingFailedError,
    ProviderRequestError,
    UnsupportedFormatError,
)


KEY_HEADER = "Ocp-Apim-Subscription-Key"
ERROR_CODE_HEADER = "ms-azure-ai-errorcode"

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"

# Provider error codes that mean "we cannot read this image type"
_FORMAT_ERROR_CODES = {"invalidimageformat", "unsupportedmediatype", "invalidimage", "invalidimageurl"}
_SIZE_ERROR_CODES = {"invalidimagesize", "invalidimagedimension"}
_TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}


class _TransientPollError(Exception):
    """Internal marker for a poll failure worth retrying."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class AzureReadClient:
    """
    Submits images to the Read API and polls the resulting operation.

    The client keeps no per-request state; one instance (and its pooled
    ``requests.Session``) may be shared across worker threads.
    """

    def __init__(self, config: AzureConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self.logger = logging.getLogger(__name__)

    def read(self, image_data: bytes, cancel_event: Optional[threading.Event] = None, logger=None) -> List[RawTextLine]:
        """
        Run OCR on a prepared image.

        Args:
            image_data: Provider-compliant image bytes
            cancel_event: Set by the caller to abandon polling
            logger: Optional request-scoped logger

        Returns:
            List[RawTextLine]: Recognized lines of every page, in provider order

        Raises:
            ProviderAuthError, UnsupportedFormatError, InvalidImageError,
            ProviderProcessingFailedError, ProviderRequestError,
            OCRTimeoutError, OCRCancelledError
        """
        log = logger or self.logger
        cancel = cancel_event or threading.Event()
        operation_url = self.submit(image_data, cancel, log)
        result = self.poll(operation_url, cancel, log)
        lines = self.parse_lines(result)
        log.info(f"OCR completed with {len(lines)} text lines")
        return lines

    def submit(self, image_data: bytes, cancel: threading.Event, log=None) -> str:
        """POST the image and return the ``Operation-Location`` URL."""
        log = log or self.logger
        url = self.config.analyze_url()
        headers = {
            KEY_HEADER: self.config.subscription_key,
            "Content-Type": "application/octet-stream",
        }
        attempts = self.config.submit_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            self._check_cancelled(cancel)
            try:
                log.debug(f"Submitting {len(image_data)} bytes to {url} (attempt {attempt}/{attempts})")
                response = self.session.post(url, data=image_data, headers=headers, timeout=self.config.submit_timeout)
            except requests.RequestException as e:
                last_error = e
                log.warning(f"Submit attempt {attempt} failed: {e}")
                self._wait(self._backoff(attempt), cancel)
                continue

            if response.status_code in (200, 202):
                operation_url = response.headers.get("Operation-Location")
                if not operation_url:
                    raise ProviderRequestError("No operation location returned from OCR provider")
                log.debug(f"Submission accepted, operation at {operation_url}")
                return operation_url

            if response.status_code in _TRANSIENT_STATUS:
                last_error = ProviderRequestError(f"OCR provider returned HTTP {response.status_code}")
                log.warning(f"Submit attempt {attempt} got HTTP {response.status_code}")
                delay = self._retry_after(response)
                self._wait(min(delay, self.config.max_backoff) if delay is not None else self._backoff(attempt), cancel)
                continue

            self._raise_for_submit_status(response, log)

        raise ProviderRequestError(f"OCR submission failed after {attempts} attempts", original_error=last_error)

    def poll(self, operation_url: str, cancel: threading.Event, log=None) -> Dict[str, Any]:
        """
        Poll the operation until it succeeds, fails, or the budget runs out.

        The budget is a hard wall-clock deadline: every wait and every status
        request is clamped to the time left, so one stuck job cannot hold a
        worker past it.
        """
        log = log or self.logger
        cfg = self.config
        budget = cfg.poll_timeout if cfg.poll_timeout is not None else cfg.poll_interval * cfg.max_poll_attempts
        deadline = time.monotonic() + budget if budget > 0 else None

        for attempt in range(1, cfg.max_poll_attempts + 1):
            self._wait(self._clamp(cfg.poll_interval, deadline), cancel)
            self._check_deadline(deadline, budget)

            payload = self._poll_once(operation_url, cancel, log, attempt, deadline, budget)
            if payload is None:
                continue

            status = str(payload.get("status", "")).lower()
            log.debug(f"Poll attempt {attempt}: status = {status}")
            if status == STATUS_SUCCEEDED:
                return payload
            if status == STATUS_FAILED:
                raise ProviderProcessingFailedError("OCR provider reported the job as failed")

        raise OCRTimeoutError(f"OCR result not ready after {cfg.max_poll_attempts} polling attempts")

    def _poll_once(self, operation_url: str, cancel: threading.Event, log, attempt: int,
                   deadline: Optional[float] = None, budget: float = 0.0) -> Optional[Dict[str, Any]]:
        """
        Fetch the operation status, retrying transient failures.

        Returns None when every retry failed, so the attempt is spent but the
        loop carries on.
        """
        cfg = self.config
        for retry in range(cfg.transient_retries + 1):
            self._check_cancelled(cancel)
            self._check_deadline(deadline, budget)
            try:
                return self._get_status(operation_url, self._clamp(cfg.poll_request_timeout, deadline))
            except _TransientPollError as e:
                if retry >= cfg.transient_retries:
                    log.warning(f"Poll attempt {attempt} failed after {retry + 1} tries: {e}")
                    return None
                delay = e.retry_after
                if delay is None:
                    delay = cfg.poll_interval * (cfg.transient_backoff_factor ** (retry + 1))
                delay = self._clamp(min(delay, cfg.max_backoff), deadline)
                log.info(f"Transient poll failure ({e}), retrying in {delay:.1f}s")
                self._wait(delay, cancel)
        return None

    def _get_status(self, operation_url: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        try:
            response = self.session.get(
                operation_url,
                headers={KEY_HEADER: self.config.subscription_key},
                timeout=timeout if timeout is not None else self.config.poll_request_timeout,
            )
        except requests.RequestException as e:
            raise _TransientPollError(str(e))

        if response.status_code in (401, 403):
            raise ProviderAuthError(f"OCR provider rejected credentials while polling (HTTP {response.status_code})")
        if response.status_code in _TRANSIENT_STATUS:
            raise _TransientPollError(f"HTTP {response.status_code}", retry_after=self._retry_after(response))
        if response.status_code >= 400:
            raise ProviderRequestError(f"OCR status request failed with HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            raise _TransientPollError("unparsable status response")
        if not isinstance(payload, dict):
            raise _TransientPollError("unexpected status payload")
        return payload

    @staticmethod
    def parse_lines(payload: Dict[str, Any]) -> List[RawTextLine]:
        """Extract ``RawTextLine`` objects from every page of a succeeded result."""
        analyze = payload.get("analyzeResult") or {}
        lines: List[RawTextLine] = []
        for page_index, page in enumerate(analyze.get("readResults") or []):
            for line in page.get("lines") or []:
                text = line.get("text")
                box = line.get("boundingBox")
                if not text or not box or len(box) < 8:
                    continue
                lines.append(RawTextLine.from_bounding_box(text, box, page=page_index))
        return lines

    def _raise_for_submit_status(self, response: requests.Response, log) -> None:
        status = response.status_code
        code, message = self._error_details(response)
        if status in (401, 403):
            log.error(f"OCR provider authentication failed (HTTP {status}); check endpoint and subscription key")
            raise ProviderAuthError(f"OCR provider rejected credentials (HTTP {status})")
        if status == 415 or (status == 400 and code in _FORMAT_ERROR_CODES):
            raise UnsupportedFormatError(message or "Image format not supported by the OCR provider")
        if status == 400 and code in _SIZE_ERROR_CODES:
            raise InvalidImageError(message or "Image size not accepted by the OCR provider")
        raise ProviderRequestError(f"OCR provider request error (HTTP {status}): {message or 'invalid request'}")

    @staticmethod
    def _error_details(response: requests.Response):
        code = (response.headers.get(ERROR_CODE_HEADER) or "").lower()
        message = ""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            err = body.get("error") or {}
            if isinstance(err, dict):
                message = err.get("message") or ""
                inner = err.get("innererror") or {}
                code = code or str(inner.get("code") or err.get("code") or "").lower()
        return code, message

    @staticmethod
    def _retry_after(response: requests.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            return None

    def _backoff(self, attempt: int) -> float:
        cfg = self.config
        return min(cfg.max_backoff, max(cfg.poll_interval, 0.0) * (cfg.transient_backoff_factor ** attempt))

    @staticmethod
    def _clamp(delay: float, deadline: Optional[float]) -> float:
        """Shorten ``delay`` so it never runs past ``deadline``."""
        if deadline is None:
            return delay
        return max(0.0, min(delay, deadline - time.monotonic()))

    @staticmethod
    def _check_deadline(deadline: Optional[float], budget: float) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise OCRTimeoutError(f"OCR result not ready within {budget:.1f}s")

    @staticmethod
    def _wait(delay: float, cancel: threading.Event) -> None:
        """Sleep for ``delay`` seconds unless the caller cancels first."""
        if delay > 0 and cancel.wait(delay):
            raise OCRCancelledError("OCR request cancelled by caller")
        if cancel.is_set():
            raise OCRCancelledError("OCR request cancelled by caller")

    @staticmethod
    def _check_cancelled(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise OCRCancelledError("OCR request cancelled by caller")

    def close(self) -> None:
        self.session.close()
