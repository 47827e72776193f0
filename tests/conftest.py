"""
Pytest configuration and shared fixtures for the transcript OCR tests.
"""
import logging
import os
import sys

import pytest

"""
Put the project root on the import path so that tests started from the
tests directory can import the top-level packages (models/*, services/*).
"""
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from models.config import AppConfig
from models.data_models import SpeakerMapping


@pytest.fixture(autouse=True)
def _quiet_logging(caplog):
    """Capture pipeline logs at DEBUG so tests can assert on them."""
    caplog.set_level(logging.DEBUG)
    yield


@pytest.fixture
def app_config():
    """Configuration with fake credentials and no waiting between polls."""
    cfg = AppConfig()
    cfg.azure.endpoint = "https://example.cognitiveservices.azure.com/"
    cfg.azure.subscription_key = "test-key"
    cfg.azure.poll_interval = 0.0
    cfg.azure.max_backoff = 0.0
    cfg.logging.file = ""
    return cfg


@pytest.fixture
def right_mapping():
    return SpeakerMapping(me_name="Sam", them_name="Ali", my_side_or_color="RIGHT")


@pytest.fixture
def green_mapping():
    return SpeakerMapping(me_name="Sam", them_name="Ali", my_side_or_color="GREEN")
