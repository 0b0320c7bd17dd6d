"""
config_resolver.py — Resolve an institution's effective configuration.

A ResolvedConfig bundles everything a computation needs for one institution
and year: the validated GradingConfig, the AchievementConfig, the judgment
TemplateMap and the recovery windows. It is resolved once per request or
per batch and passed down as an immutable value.

Two config stores satisfy the same contract:
- core.store.InMemoryFactStore (default)
- HttpConfigStore, an httpx client for a remote config service, enabled by
  setting CONFIG_STORE_URL
"""

import logging
import os
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from core.errors import ConfigInvariantViolation, NotFoundError
from core.grading_config import (
    AchievementConfig,
    GradingConfig,
    TemplateMap,
    achievement_config_from_dict,
    grading_config_from_dict,
    validate_grading_config,
)
from core.recovery import RecoveryWindow, recovery_window_from_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConfig:
    institution_id: str
    year: int
    grading: GradingConfig
    achievement: AchievementConfig
    templates: TemplateMap
    windows: Mapping[str, RecoveryWindow]


class HttpConfigStore:
    """Read-only config store backed by a JSON HTTP service."""

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else float(os.getenv("CONFIG_STORE_TIMEOUT", "10"))
        self._transport = transport

    def _get(self, path: str, key: Dict[str, Any]) -> Any:
        with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            res = client.get(path)
            if res.status_code == 404:
                raise NotFoundError(f"Config not found at {path}", key)
            res.raise_for_status()
            return res.json()

    def get_grading_config(self, institution_id: str) -> GradingConfig:
        data = self._get(f"/institutions/{institution_id}/grading-config", {"institution_id": institution_id})
        return grading_config_from_dict(data, institution_id)

    def get_achievement_config(self, institution_id: str) -> AchievementConfig:
        key = {"institution_id": institution_id}
        try:
            data = self._get(f"/institutions/{institution_id}/achievement-config", key)
        except NotFoundError:
            data = {}
        return achievement_config_from_dict(data, institution_id)

    def get_recovery_windows(self, institution_id: str, year: int) -> Dict[str, RecoveryWindow]:
        key = {"institution_id": institution_id, "year": year}
        try:
            data = self._get(f"/institutions/{institution_id}/recovery-windows/{year}", key)
        except NotFoundError:
            return {}
        windows = [recovery_window_from_dict(w) for w in data or []]
        return {w.target_id: w for w in windows}


def config_store_from_env(default_store):
    """HttpConfigStore when CONFIG_STORE_URL is set, else the given store."""
    url = os.getenv("CONFIG_STORE_URL", "").strip()
    if not url:
        return default_store
    logger.info("Using remote config store at %s", url)
    return HttpConfigStore(url)


class ConfigResolver:
    """
    Resolves and caches ResolvedConfig per (institution, year).

    Create one per request or batch so a config edit is picked up by the next
    batch but never changes mid-batch.
    """

    def __init__(self, config_store):
        self.config_store = config_store
        self._cache: Dict[Tuple[str, int], ResolvedConfig] = {}
        self._lock = threading.Lock()

    def resolve(self, institution_id: str, year: int) -> ResolvedConfig:
        cache_key = (institution_id, year)
        with self._lock:
            cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        grading = self.config_store.get_grading_config(institution_id)
        try:
            validate_grading_config(grading)
        except ConfigInvariantViolation:
            logger.error("Invalid grading config for institution %s", institution_id)
            raise
        achievement = self.config_store.get_achievement_config(institution_id)
        windows = self.config_store.get_recovery_windows(institution_id, year)

        resolved = ResolvedConfig(
            institution_id=institution_id,
            year=year,
            grading=grading,
            achievement=achievement,
            templates=TemplateMap.from_config(achievement),
            windows=MappingProxyType(dict(windows)),
        )
        with self._lock:
            self._cache[cache_key] = resolved
        return resolved
