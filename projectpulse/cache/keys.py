"""
Deterministic cache keys.

A key is the operation name plus a canonical JSON rendering of its
parameters: keys are sorted and None values dropped, so {"a": 1, "b": None}
and {"a": 1} share a key, while any real difference in a filter produces a
different one.
"""

import hashlib
import json
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from typing import Any

MAX_KEY_LENGTH = 256


def _canonical(params: Any) -> Any:
    if is_dataclass(params) and not isinstance(params, type):
        params = asdict(params)
    if hasattr(params, "model_dump"):
        params = params.model_dump()
    if isinstance(params, Mapping):
        return {str(k): _canonical(v) for k, v in params.items() if v is not None}
    if isinstance(params, (list, tuple)):
        return [_canonical(v) for v in params]
    if isinstance(params, (set, frozenset)):
        return sorted(_canonical(v) for v in params)
    return params


def make_cache_key(operation: str, params: Any = None) -> str:
    """
    Build the cache key for an operation and its parameters.

    Args:
        operation: Operation name, used as the key namespace (e.g. "overview")
        params: Mapping, dataclass or pydantic model of query parameters

    Returns:
        "operation:{json}" or, for long keys, "operation:#<sha256 prefix>"
    """
    if params is None:
        return f"{operation}:"

    payload = json.dumps(_canonical(params), sort_keys=True, separators=(",", ":"), default=str)
    key = f"{operation}:{payload}"

    if len(key) > MAX_KEY_LENGTH:
        digest = hashlib.sha256(payload.encode()).hexdigest()[:32]
        return f"{operation}:#{digest}"

    return key
