"""Deterministic cache key derivation."""

import hashlib
import json
import math
from decimal import Decimal
from enum import Enum
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel

from ..config.plans import PlanLimits
from ..models.cache_models import CacheKind
from ..models.generation_models import (
    GenerationRequest,
    ImageCharacteristics,
    UserRequirements,
)
from .errors import ValidationError


def canonicalize(value: Any) -> Any:
    """
    Reduce a value to a JSON-ready structure with one spelling per meaning.

    PATTERN: Sort mapping keys, integral floats become ints
    GOTCHA: bool is a subclass of int and must stay a bool

    Args:
        value: Arbitrary nested structure

    Returns:
        Canonical structure

    Raises:
        ValueError: On NaN/infinite numbers or unsupported types
    """
    if isinstance(value, BaseModel):
        return canonicalize(value.model_dump(mode="json"))
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        number = float(value)
        if math.isnan(number) or math.isinf(number):
            raise ValueError(f"Cannot derive a key from {value!r}")
        if number.is_integer():
            return int(number)
        return number
    if isinstance(value, Mapping):
        return {str(k): canonicalize(v) for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))}
    if isinstance(value, (set, frozenset)):
        items = [canonicalize(v) for v in value]
        return sorted(items, key=lambda v: json.dumps(v, sort_keys=True))
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    raise ValueError(f"Unsupported type in cache key: {type(value).__name__}")


def derive_key(kind: CacheKind, fields: Any) -> str:
    """
    Derive a cache key from structured fields.

    CRITICAL: Pure - equal fields in any order give the same key
    PATTERN: SHA256 over kind plus canonical JSON

    Args:
        kind: Cache namespace
        fields: Logical identity of the cached item

    Returns:
        Key of the form "<kind>:<hex digest>"

    Raises:
        ValidationError: If a field cannot be canonicalized
    """
    kind_value = CacheKind(kind).value
    try:
        canonical_fields = canonicalize(fields)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    canonical = json.dumps(
        canonical_fields,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    digest = hashlib.sha256(f"{kind_value}\n{canonical}".encode("utf-8")).hexdigest()
    return f"{kind_value}:{digest}"


def generation_key(request: GenerationRequest, model_id: Optional[str] = None) -> str:
    """Key for one model's output for a generation request."""
    return derive_key(
        CacheKind.GENERATION,
        {
            "prompt": request.prompt,
            "model_id": model_id or request.model_id,
            "parameters": request.parameters,
            "user_id": request.user_id,
        },
    )


def selection_key(
    requirements: UserRequirements,
    image_characteristics: Optional[ImageCharacteristics] = None,
    user_id: Optional[str] = None,
    plan: Optional[PlanLimits] = None,
    favorite_models: Optional[List[str]] = None,
) -> str:
    """
    Key for a model selection decision.

    GOTCHA: Plan limits and favourites are part of the identity, so a
        changed plan or new favourite never reuses an older ranking
    """
    return derive_key(
        CacheKind.MODEL_SELECTION,
        {
            "requirements": requirements,
            "image_characteristics": image_characteristics,
            "user_id": user_id,
            "plan": plan,
            "favorite_models": sorted(favorite_models or []),
        },
    )


def user_preference_key(user_id: str) -> str:
    """Key for a user's stored preferences."""
    return derive_key(CacheKind.USER_PREFERENCE, {"user_id": user_id})
