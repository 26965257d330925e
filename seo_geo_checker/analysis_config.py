"""
Current analysis configuration: scoring weights, thresholds, feature flags
and named presets.
"""
import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional

import pydantic

from seo_geo_checker.config import DEFAULT_ANALYSIS_CONFIG
from seo_geo_checker.models import FeatureFlags, GeoWeights, SeoWeights, Thresholds

logger = logging.getLogger(__name__)

# Weights in a group may drift this far from 1.0
WEIGHT_SUM_TOLERANCE = 0.01

DEFAULT_FEATURE_FLAGS: Dict[str, bool] = {
    "enableExperimentalGEO": False,
    "enableAdvancedStructuredData": True,
    "enableAIContentAnalysis": True,
    "enablePerformanceOptimizations": True,
    "enableBetaRecommendations": False,
}

THRESHOLD_KEYS = ("pageSpeedMin", "contentLengthMin", "headingLevels")


def _preset(seo, geo, thresholds, **flags) -> Dict[str, Dict[str, Any]]:
    return {
        "seoWeights": dict(zip(("technical", "content", "structure"), seo)),
        "geoWeights": dict(zip(("readability", "credibility", "completeness", "structuredData"), geo)),
        "thresholds": dict(zip(THRESHOLD_KEYS, thresholds)),
        "featureFlags": {**DEFAULT_FEATURE_FLAGS, **flags},
    }


PRESETS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "seo-focused": _preset((0.5, 0.4, 0.1), (0.2, 0.2, 0.3, 0.3), (95, 500, 4)),
    "geo-focused": _preset((0.3, 0.3, 0.4), (0.4, 0.4, 0.1, 0.1), (85, 800, 5)),
    "balanced": _preset((0.35, 0.35, 0.3), (0.25, 0.25, 0.25, 0.25), (90, 400, 3)),
    "performance-focused": _preset((0.7, 0.2, 0.1), (0.3, 0.2, 0.2, 0.3), (98, 200, 2)),
    "experimental": _preset(
        (0.35, 0.35, 0.3), (0.25, 0.25, 0.25, 0.25), (90, 400, 3),
        enableExperimentalGEO=True, enableBetaRecommendations=True,
    ),
}


class ConfigValidationError(ValueError):
    """Raised when a configuration change would leave the config invalid."""

    def __init__(self, errors: List[str]):
        super().__init__(", ".join(errors))
        self.errors = errors


def default_config() -> Dict[str, Dict[str, Any]]:
    config = copy.deepcopy(DEFAULT_ANALYSIS_CONFIG)
    config["featureFlags"] = dict(DEFAULT_FEATURE_FLAGS)
    return config


def _overlay(base: Dict[str, Dict[str, Any]], changes: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    merged = copy.deepcopy(base)
    for section, values in changes.items():
        if section in merged and isinstance(values, dict):
            merged[section].update({k: v for k, v in values.items() if v is not None})
    return merged


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Check a (possibly partial) configuration document.

    Field types and ranges are checked by the pydantic section models;
    each weight group that is present must also sum to 1.0.

    Returns:
        Human-readable problems; empty when the config is valid
    """
    errors: List[str] = []
    sections = (
        ("seoWeights", SeoWeights, "SEO"),
        ("geoWeights", GeoWeights, "GEO"),
        ("thresholds", Thresholds, None),
        ("featureFlags", FeatureFlags, None),
    )
    for section, model, label in sections:
        values = config.get(section)
        if values is None:
            continue
        try:
            parsed = model.model_validate(values)
        except pydantic.ValidationError as e:
            for err in e.errors():
                location = ".".join(str(part) for part in (section, *err["loc"]))
                errors.append(f"{location}: {err['msg']}")
            continue

        if label:
            weights = [w for w in parsed.model_dump().values() if w is not None]
            total = sum(weights)
            if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
                errors.append(f"{label} weights must sum to 1.0, got {round(total, 4)}")
    return errors


class ConfigStore:
    """
    Holds the analysis configuration new jobs start from.

    Every change is validated against the whole resulting config before it
    replaces the current one.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._config = _overlay(default_config(), initial or {})
        self.lock = asyncio.Lock()

    async def current(self) -> Dict[str, Dict[str, Any]]:
        async with self.lock:
            return copy.deepcopy(self._config)

    def _replace(self, config: Dict[str, Dict[str, Any]], reason: str) -> Dict[str, Dict[str, Any]]:
        errors = validate_config(config)
        if errors:
            raise ConfigValidationError(errors)
        self._config = config
        logger.info(f"Analysis configuration updated: {reason}")
        return copy.deepcopy(config)

    async def update(self, changes: Dict[str, Any], reason: str = "update") -> Dict[str, Dict[str, Any]]:
        """Overlay partial sections (``seoWeights``, ``thresholds``, ...) onto the current config."""
        async with self.lock:
            return self._replace(_overlay(self._config, changes), reason)

    async def replace(self, config: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Import a whole config; missing values fall back to the defaults."""
        async with self.lock:
            return self._replace(_overlay(default_config(), config), "import")

    async def apply_preset(self, name: str) -> Dict[str, Dict[str, Any]]:
        if name not in PRESETS:
            raise KeyError(name)
        async with self.lock:
            return self._replace(copy.deepcopy(PRESETS[name]), f"preset {name}")

    async def reset(self) -> Dict[str, Dict[str, Any]]:
        async with self.lock:
            return self._replace(default_config(), "reset to defaults")

    async def threshold(self, key: str) -> Optional[Any]:
        async with self.lock:
            return self._config["thresholds"].get(key)

    async def feature_enabled(self, feature: str) -> Optional[bool]:
        async with self.lock:
            return self._config["featureFlags"].get(feature)
