"""Deterministic cache keys for generator requests."""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

# Fields that change what the generator produces. Everything else on a
# request (caller ids, tracing, flags) is incidental and never keyed.
KEY_FIELDS = ("model", "system", "messages", "max_tokens", "temperature", "tools")


def canonical_request(request: Mapping[str, Any]) -> str:
    """Canonical JSON of the semantically relevant request fields."""
    relevant = {k: request[k] for k in KEY_FIELDS if k in request and request[k] is not None}
    return json.dumps(
        relevant,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def cache_key(request: Mapping[str, Any]) -> str:
    """SHA-256 hex digest of the canonical request."""
    return hashlib.sha256(canonical_request(request).encode("utf-8")).hexdigest()


def component_key(component_type: str, identifier: str) -> str:
    return f"l3:{component_type}:{identifier}"
