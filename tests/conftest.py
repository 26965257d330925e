"""
Shared fixtures for the SEO & GEO Health Checker test suite.
"""
import os
import sys

import pytest
from fastapi.testclient import TestClient

# Add the project root to the path so tests run without an editable install
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from seo_geo_checker.config import Settings
from seo_geo_checker.main import create_app


@pytest.fixture
def settings(tmp_path):
    """Development settings with reports written to a temporary directory."""
    return Settings(environment="development", reports_dir=str(tmp_path / "reports"))


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_client(tmp_path):
    """Build a client around custom settings or collaborators."""
    def _make(**kwargs):
        kwargs.setdefault("settings", Settings(reports_dir=str(tmp_path / "reports")))
        return TestClient(create_app(**kwargs))
    return _make
