"""
Shared route helpers — app state access and payload parsing.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi import HTTPException, Request

from core.config_resolver import ConfigResolver, ResolvedConfig, config_store_from_env
from core.grading_config import GradingConfig, grading_config_from_dict
from core.numeric import to_decimal
from core.recompute import EnrollmentLocks
from core.store import InMemoryFactStore


def get_store(request: Request) -> InMemoryFactStore:
    return request.app.state.store


def get_locks(request: Request) -> EnrollmentLocks:
    return request.app.state.locks


def get_resolver(request: Request) -> ConfigResolver:
    """A fresh resolver per request, so config edits apply to the next call."""
    return ConfigResolver(config_store_from_env(get_store(request)))


def require(payload: dict, name: str) -> Any:
    value = payload.get(name)
    if value is None or value == "":
        raise HTTPException(400, f"'{name}' is required.")
    return value


def require_decimal(payload: dict, name: str) -> Decimal:
    value = to_decimal(require(payload, name))
    if value is None:
        raise HTTPException(400, f"'{name}' must be a number.")
    return value


def require_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(400, f"'{name}' must be an integer.")


def current_year(payload: Optional[dict] = None) -> int:
    if payload and payload.get("year") is not None:
        return require_int(payload["year"], "year")
    return datetime.now().year


def grading_from_payload(request: Request, payload: dict) -> GradingConfig:
    """Inline 'config' wins; otherwise the stored config of 'institution_id'."""
    if payload.get("config"):
        return grading_config_from_dict(payload["config"], payload.get("institution_id"))
    institution_id = require(payload, "institution_id")
    return resolve(request, institution_id, current_year(payload)).grading


def resolve(request: Request, institution_id: str, year: int) -> ResolvedConfig:
    return get_resolver(request).resolve(institution_id, year)
