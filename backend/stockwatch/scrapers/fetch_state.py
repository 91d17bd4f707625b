"""Escalation states for fetching one product page.

    PLAIN_FETCH -> HEADLESS_FETCH -> MANUAL_VERIFICATION -> SUCCESS | FAILURE

``next_state`` is a pure function of the current state, the challenge
verdict for that tier and the policy, so every transition is unit-testable
without a network or a browser.
"""

import enum
from dataclasses import dataclass


class FetchState(str, enum.Enum):
    PLAIN_FETCH = "plain_fetch"
    HEADLESS_FETCH = "headless_fetch"
    MANUAL_VERIFICATION = "manual_verification"
    SUCCESS = "success"
    FAILURE = "failure"

    @property
    def is_terminal(self) -> bool:
        return self in (FetchState.SUCCESS, FetchState.FAILURE)


@dataclass(frozen=True)
class FetchPolicy:
    """Which fallback tiers a check may use."""

    headless_enabled: bool = True
    manual_verification_allowed: bool = False
    session_ttl_days: int = 14


def next_state(state: FetchState, challenged: bool, policy: FetchPolicy) -> FetchState:
    """Return the state that follows ``state`` given its challenge verdict.

    Raises:
        ValueError: If ``state`` is already terminal
    """
    if state.is_terminal:
        raise ValueError(f"{state.value} is terminal")

    if not challenged:
        return FetchState.SUCCESS

    if state is FetchState.PLAIN_FETCH:
        return FetchState.HEADLESS_FETCH if policy.headless_enabled else FetchState.FAILURE

    if state is FetchState.HEADLESS_FETCH:
        return FetchState.MANUAL_VERIFICATION if policy.manual_verification_allowed else FetchState.FAILURE

    # A manual verification that is still challenged has run out of time
    return FetchState.FAILURE
