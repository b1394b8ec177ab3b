"""
Stakecourt: Escrow Staking and Dispute Arbitration

A staker locks fungible-token collateral behind a stake account. Whitelisted
claimants open claims against it; claims settle off-protocol or, when
settlement fails, go to arbitration, either before a single designated
arbiter or before a panel that votes by commit-reveal.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                         STAKING AND ARBITRATION                          │
    │                                                                          │
    │  ARBITRATION                                                             │
    │    ruling.py      Ruling sources sharing one delivery path              │
    │    voting.py      Commit-reveal panel voting                            │
    │                                                                          │
    │  ESCROW                                                                  │
    │    stake.py       Stake account aggregate                               │
    │    claims.py      Claim state machine and registry                      │
    │    lockup.py      Withdrawal lockup that freezes during disputes        │
    │                                                                          │
    │  COLLABORATORS                                                           │
    │    gateway.py     Token transfer gateway                                │
    │    whitelist.py   Arbiter whitelist registries                          │
    │    clock.py       Injectable time sources                               │
    │                                                                          │
    │  FOUNDATION                                                              │
    │    hardening.py   Errors, validators, invariant checks                  │
    │    identity.py    Canonical claim ids and vote commitments              │
    │    events.py      Typed events, bus and append-only store               │
    │    observability.py  Structured logging                                 │
    │    config.py      YAML and environment configuration                    │
    │    schema.py      JSON Schema validation                                │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Claim: A claimant's assertion of breach, reserving an amount of the stake
    and escrowing an arbitration fee. Moves OPEN → SETTLEMENT_FAILED → RULED.

    Ruling: ACCEPT keeps the reserved amount out of the stake; REJECT returns
    it. The arbiter collects the fee either way.

    Lockup: After requesting withdrawal the staker waits the lockup period,
    not counting any time during which claims were unresolved.

Copyright © 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import stakecourt modules on first access."""

    if name in ("StakeAccount", "AccountConfiguration"):
        from stakecourt import stake
        return getattr(stake, name)

    if name in ("Claim", "ClaimState", "ClaimRegistry", "Ruling"):
        from stakecourt import claims
        return getattr(claims, name)

    if name == "LockupTimer":
        from stakecourt import lockup
        return lockup.LockupTimer

    if name in ("RulingSource", "DirectArbiter"):
        from stakecourt import ruling
        return getattr(ruling, name)

    if name in ("VotingEngine", "VotingStage", "CommitRecord"):
        from stakecourt import voting
        return getattr(voting, name)

    if name in ("TokenGateway", "InMemoryToken"):
        from stakecourt import gateway
        return getattr(gateway, name)

    if name in ("Whitelist", "StaticWhitelist"):
        from stakecourt import whitelist
        return getattr(whitelist, name)

    if name in ("Clock", "SystemClock", "ManualClock"):
        from stakecourt import clock
        return getattr(clock, name)

    if name in ("claim_id", "secret_hash"):
        from stakecourt import identity
        return getattr(identity, name)

    if name in ("StakeError", "Unauthorized", "InvalidState", "InvalidClaim",
                "TransferFailed", "RevealMismatch", "WindowClosed", "WindowOpen",
                "ValidationError", "InvariantViolation"):
        from stakecourt import hardening
        return getattr(hardening, name)

    raise AttributeError(f"module 'stakecourt' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Escrow
    "StakeAccount",
    "AccountConfiguration",
    "Claim",
    "ClaimState",
    "ClaimRegistry",
    "Ruling",
    "LockupTimer",
    # Arbitration
    "RulingSource",
    "DirectArbiter",
    "VotingEngine",
    "VotingStage",
    "CommitRecord",
    # Collaborators
    "TokenGateway",
    "InMemoryToken",
    "Whitelist",
    "StaticWhitelist",
    "Clock",
    "SystemClock",
    "ManualClock",
    # Identity
    "claim_id",
    "secret_hash",
    # Errors
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
]
