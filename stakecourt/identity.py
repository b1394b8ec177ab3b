"""
Deterministic identifiers for claims and vote commitments.

Both identifiers are SHA-256 digests over a canonical JSON encoding
(sorted keys, compact separators, UTF-8), so every party derives the same
value off-protocol from the same inputs.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Dict, Union

from stakecourt.hardening import ValidationError


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types.

    - Enums are replaced by their value.
    - Floats are rejected to avoid non-canonical number encodings.
    """
    if obj is None:
        return None
    if isinstance(obj, Enum):
        return _coerce_json_types(obj.value)
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in canonical JSON. Use strings or integers.")
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def canonicalize(obj: Any) -> bytes:
    """Canonical JSON bytes for ``obj``."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def digest(obj: Any) -> str:
    """SHA-256 hex digest of the canonical encoding of ``obj``."""
    return hashlib.sha256(canonicalize(obj)).hexdigest()


def claim_id(stake_handle: str, claim_number: int) -> str:
    """
    Key a claim across all stake accounts.

    Pure function of the stake account handle and the claim's sequential
    number within that account.
    """
    if isinstance(claim_number, bool) or not isinstance(claim_number, int) or claim_number < 0:
        raise ValidationError("claim_number", "must be a non-negative integer", claim_number)
    return digest({"stake": stake_handle, "claim_number": claim_number})


def secret_hash(choice: Any, salt: Union[int, str]) -> str:
    """
    Commitment an arbiter submits during the commit stage.

    ``choice`` is a Ruling (or its integer value) and ``salt`` a secret the
    arbiter keeps until the reveal stage.
    """
    if isinstance(salt, bool) or not isinstance(salt, (int, str)):
        raise ValidationError("salt", "must be an integer or string", salt)
    return digest({"choice": choice, "salt": salt})


__all__ = ["canonicalize", "digest", "claim_id", "secret_hash"]
