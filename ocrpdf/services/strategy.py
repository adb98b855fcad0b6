"""Choose the service tier for a payload of a given encoded size."""

from __future__ import annotations

import logging

from ocrpdf.config import AppConfig
from ocrpdf.errors import ConfigurationError
from ocrpdf.models.job import TIER_EXECUTION, TIER_REQUEST_STYLE, Tier, TierPlan
from ocrpdf.utils.logging_utils import structured_log

_LOG = logging.getLogger("strategy")

_KEY_ENV = {Tier.FAST: "AI_API_KEY_FREE", Tier.HEAVY: "AI_API_KEY_PAID"}


class StrategySelector:
    """Pure function of (estimated size, configuration); holds no per-call state.

    Sizes up to and including the threshold go to FAST (realtime, inline
    parts); anything larger goes to HEAVY (file upload + batch job). A tier
    without its credential is a configuration error, never a silent fallback
    to the other tier.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def select(self, estimated_bytes: int) -> TierPlan:
        threshold = self._threshold()
        tier = Tier.FAST if estimated_bytes <= threshold else Tier.HEAVY
        plan = self.plan_for(tier, estimated_bytes)
        structured_log(
            _LOG,
            logging.INFO,
            "tier_selected",
            tier=tier.value,
            estimated_bytes=estimated_bytes,
            threshold_bytes=threshold,
        )
        return plan

    def plan_for(self, tier: Tier, estimated_bytes: int) -> TierPlan:
        if estimated_bytes < 0:
            raise ValueError("estimated_bytes must be non-negative")
        threshold = self._threshold()
        key = (
            self._config.fast_api_key if tier is Tier.FAST else self._config.heavy_api_key
        )
        if not key:
            raise ConfigurationError(
                f"{_KEY_ENV[tier]} is required for the {tier.value} tier",
                component="strategy",
                detail={"tier": tier.value, "estimated_bytes": estimated_bytes},
            )
        return TierPlan(
            tier=tier,
            api_key=key,
            request_style=TIER_REQUEST_STYLE[tier],
            execution=TIER_EXECUTION[tier],
            estimated_bytes=estimated_bytes,
            threshold_bytes=threshold,
        )

    def _threshold(self) -> int:
        threshold = self._config.size_threshold_bytes
        if threshold is None:
            raise ConfigurationError(
                "API_SIZE_THRESHOLD is not configured", component="strategy"
            )
        return threshold


__all__ = ["StrategySelector"]
