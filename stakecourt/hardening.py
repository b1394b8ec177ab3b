"""
Stakecourt Validation and Hardening Module

Error taxonomy, input validation, constant-time comparisons and state machine
invariant enforcement shared by every component of the engine.

Security Model:
    - All caller-supplied amounts are untrusted until validated
    - Commitment checks use constant-time comparisons
    - Every operation validates fully before it mutates anything
    - A failed operation leaves all state unchanged, so an identical
      retry against unchanged state fails identically

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hmac
import re
from enum import Enum
from typing import Any, Dict, Set


# =============================================================================
# ERROR TAXONOMY
# =============================================================================

class StakeError(Exception):
    """Base exception for every caller-visible engine failure."""

    error_code = "stake_error"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)


class Unauthorized(StakeError):
    """Caller lacks the role the operation requires."""

    error_code = "unauthorized"


class InvalidState(StakeError):
    """Operation is not valid for the current claim or account state."""

    error_code = "invalid_state"


class InvalidClaim(StakeError):
    """Reference to a nonexistent or ineligible claim."""

    error_code = "invalid_claim"


class TransferFailed(StakeError):
    """The token gateway rejected a token movement."""

    error_code = "transfer_failed"


class RevealMismatch(StakeError):
    """Revealed choice and salt do not hash to the committed secret."""

    error_code = "reveal_mismatch"


class WindowClosed(StakeError):
    """The time window for the operation has already closed."""

    error_code = "window_closed"


class WindowOpen(StakeError):
    """The operation must wait until a time window has closed."""

    error_code = "window_open"


class ValidationError(StakeError):
    """Malformed caller input."""

    error_code = "validation_error"

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(f"{field}: {message}", field=field)


class InvariantViolation(StakeError):
    """Internal bookkeeping invariant violated."""

    error_code = "invariant_violation"


# =============================================================================
# VALIDATORS
# =============================================================================

HEX_DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")
ZERO_DIGEST = "0" * 64


class Validators:
    """Input validators. Each raises ValidationError on bad input."""

    @staticmethod
    def token_amount(field_name: str, value: Any) -> int:
        """Validate a token amount: a non-negative integer (bools rejected)."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(field_name, "must be an integer token amount", value)
        if value < 0:
            raise ValidationError(field_name, "cannot be negative", value)
        return value

    @staticmethod
    def address(field_name: str, value: Any) -> str:
        """Validate an account address: a non-empty string."""
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(field_name, "must be a non-empty address", value)
        return value

    @staticmethod
    def digest(field_name: str, value: Any) -> str:
        """Validate a lowercase SHA-256 hex digest that is not all zeros."""
        if not isinstance(value, str):
            raise ValidationError(field_name, "must be a hex string", value)
        normalized = value.lower()
        if not HEX_DIGEST_PATTERN.match(normalized):
            raise ValidationError(field_name, "must be a 64 character hex digest", value)
        if normalized == ZERO_DIGEST:
            raise ValidationError(field_name, "cannot be the zero digest", value)
        return normalized


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions with security hardening."""

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return hmac.compare_digest(a, b)

    @staticmethod
    def secure_compare_str(a: str, b: str) -> bool:
        """Constant-time string comparison."""
        return CryptoUtils.secure_compare(a.encode(), b.encode())


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvalidState(
                f"Invalid state transition: {current_state.value} -> {target_state.value}. "
                f"Valid targets: {sorted(s.value for s in valid_targets)}",
                current_state=current_state.value,
                target_state=target_state.value,
            )

    @staticmethod
    def check_non_negative(field_name: str, value: int) -> None:
        """Ensure value is non-negative."""
        if value < 0:
            raise InvariantViolation(f"{field_name} cannot be negative: {value}")

    @staticmethod
    def check_balance_sufficient(
        available: int,
        required: int,
        field_name: str = "balance",
    ) -> None:
        """Ensure sufficient balance for operation."""
        if available < required:
            raise InvalidState(
                f"Insufficient {field_name}: have {available}, need {required}",
                available=available,
                required=required,
            )


__all__ = [
    "StakeError",
    "Unauthorized",
    "InvalidState",
    "InvalidClaim",
    "TransferFailed",
    "RevealMismatch",
    "WindowClosed",
    "WindowOpen",
    "ValidationError",
    "InvariantViolation",
    "Validators",
    "CryptoUtils",
    "InvariantChecker",
    "ZERO_DIGEST",
]
