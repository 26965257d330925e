"""
Tests for the analysis configuration store and the /api/config endpoints.
"""
import asyncio

import pytest

from seo_geo_checker.analysis_config import (
    PRESETS, ConfigStore, ConfigValidationError, default_config, validate_config
)
from seo_geo_checker.jobs import JobId


@pytest.fixture
def config_store():
    return ConfigStore()


# --- validate_config ---

def test_default_config_is_valid():
    assert validate_config(default_config()) == []


@pytest.mark.parametrize("name", list(PRESETS))
def test_presets_are_valid(name):
    assert validate_config(PRESETS[name]) == []


def test_validate_config_checks_weight_sums():
    errors = validate_config({"seoWeights": {"technical": 0.5, "content": 0.4, "structure": 0.2}})
    assert errors == ["SEO weights must sum to 1.0, got 1.1"]


def test_validate_config_checks_ranges_and_types():
    errors = validate_config({
        "geoWeights": {"readability": 2},
        "thresholds": {"headingLevels": 9},
        "featureFlags": {"enableExperimentalGEO": "maybe"},
    })

    assert any(e.startswith("geoWeights.readability") for e in errors)
    assert any(e.startswith("thresholds.headingLevels") for e in errors)
    assert any(e.startswith("featureFlags.enableExperimentalGEO") for e in errors)


# --- ConfigStore ---

@pytest.mark.asyncio
async def test_update_overlays_current_config(config_store):
    config = await config_store.update({"thresholds": {"pageSpeedMin": 50}})

    assert config["thresholds"]["pageSpeedMin"] == 50
    assert config["thresholds"]["contentLengthMin"] == 300
    assert (await config_store.current())["thresholds"]["pageSpeedMin"] == 50


@pytest.mark.asyncio
async def test_invalid_update_keeps_previous_config(config_store):
    with pytest.raises(ConfigValidationError) as excinfo:
        await config_store.update({"seoWeights": {"technical": 0.9}})

    assert "SEO weights must sum to 1.0" in excinfo.value.errors[0]
    assert (await config_store.current()) == default_config()


@pytest.mark.asyncio
async def test_apply_preset_and_reset(config_store):
    config = await config_store.apply_preset("experimental")
    assert config["featureFlags"]["enableExperimentalGEO"] is True
    assert await config_store.feature_enabled("enableBetaRecommendations") is True

    await config_store.reset()
    assert (await config_store.current()) == default_config()


@pytest.mark.asyncio
async def test_apply_unknown_preset(config_store):
    with pytest.raises(KeyError):
        await config_store.apply_preset("turbo")


@pytest.mark.asyncio
async def test_current_returns_a_copy(config_store):
    snapshot = await config_store.current()
    snapshot["thresholds"]["pageSpeedMin"] = 1

    assert await config_store.threshold("pageSpeedMin") == 70


@pytest.mark.asyncio
async def test_unknown_threshold_and_feature(config_store):
    assert await config_store.threshold("missing") is None
    assert await config_store.feature_enabled("missing") is None


# --- Endpoints ---

def test_update_scoring_weights(client):
    response = client.put("/api/config/scoring-weights", json={
        "seoWeights": {"technical": 0.5, "content": 0.3, "structure": 0.2},
    })

    assert response.status_code == 200
    assert response.json()["config"]["seoWeights"]["technical"] == 0.5
    assert client.get("/api/config").json()["config"]["seoWeights"]["content"] == 0.3


def test_update_scoring_weights_rejects_bad_sum(client):
    response = client.put("/api/config/scoring-weights", json={"seoWeights": {"technical": 0.9}})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid configuration"
    assert body["validationErrors"][0].startswith("SEO weights must sum to 1.0")


def test_update_scoring_weights_rejects_out_of_range(client):
    response = client.put("/api/config/scoring-weights", json={"geoWeights": {"readability": 1.5}})

    assert response.status_code == 400
    assert response.json()["error"] == "Validation failed"


def test_update_thresholds(client):
    response = client.put("/api/config/thresholds", json={"headingLevels": 5})
    assert response.status_code == 200

    threshold = client.get("/api/config/threshold/headingLevels").json()
    assert threshold == {"success": True, "key": "headingLevels", "value": 5}


def test_update_thresholds_rejects_out_of_range(client):
    assert client.put("/api/config/thresholds", json={"pageSpeedMin": 101}).status_code == 400


def test_unknown_threshold(client):
    response = client.get("/api/config/threshold/missing")
    assert response.status_code == 404


def test_update_feature_flags(client):
    response = client.put("/api/config/feature-flags", json={"enableExperimentalGEO": True})
    assert response.status_code == 200

    feature = client.get("/api/config/feature/enableExperimentalGEO").json()
    assert feature["enabled"] is True
    assert client.get("/api/config/feature/missing").status_code == 404


def test_presets(client):
    body = client.get("/api/config/presets").json()
    assert "balanced" in body["presetNames"]
    assert set(body["presets"]) == set(body["presetNames"])

    applied = client.post("/api/config/presets/geo-focused")
    assert applied.status_code == 200
    assert applied.json()["config"]["geoWeights"]["readability"] == 0.4


def test_unknown_preset(client):
    response = client.post("/api/config/presets/turbo")

    assert response.status_code == 400
    assert response.json()["error"] == "Unknown preset"


def test_reset(client):
    client.post("/api/config/presets/seo-focused")

    response = client.post("/api/config/reset")
    assert response.status_code == 200
    assert response.json()["config"] == default_config()


def test_validate_endpoint(client):
    good = client.post("/api/config/validate", json=default_config()).json()
    assert good["validation"] == {"valid": True, "errors": []}

    bad = client.post("/api/config/validate", json={"thresholds": {"headingLevels": 0}}).json()
    assert bad["validation"]["valid"] is False


def test_export_and_import(client):
    client.post("/api/config/presets/balanced")
    exported = client.get("/api/config/export")

    assert exported.status_code == 200
    assert "analysis-config.json" in exported.headers["content-disposition"]

    client.post("/api/config/reset")
    imported = client.post("/api/config/import", json=exported.json())
    assert imported.status_code == 200
    assert client.get("/api/config").json()["config"] == PRESETS["balanced"]


def test_export_rejects_other_formats(client):
    assert client.get("/api/config/export", params={"format": "yaml"}).status_code == 400


def test_import_rejects_invalid_config(client):
    response = client.post("/api/config/import", json={"geoWeights": {"readability": 0.9}})

    assert response.status_code == 400
    assert response.json()["validationErrors"]


def test_analysis_jobs_use_current_config(client):
    client.post("/api/config/presets/performance-focused")

    job_id = client.post("/api/analysis/start", json={"urls": ["https://example.com"]}).json()["jobId"]
    stored = asyncio.run(client.app.state.jobs.store.get(JobId.parse(job_id)))

    assert stored.config["seoWeights"]["technical"] == 0.7
    assert stored.config["featureFlags"]["enableExperimentalGEO"] is False
