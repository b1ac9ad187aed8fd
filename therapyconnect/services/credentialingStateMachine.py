"""
Credentialing State Machine -- TC-CRED-004
===========================================

Derives a provider's credentialing status from the facts on record.  The
status stored on the profile is a cache of ``settle(current, facts)``; it is
never assigned directly by request handlers.

State machine overview::

    draft --> pending_verification --> pending_review --> approved
                                                     \\-> rejected (terminal)

    (any state except rejected) --> suspended_expired
        when a current required document has expired

    suspended_expired --> pending_verification   once replaced (draft if no NPI)

``next_status`` applies at most one rule.  ``settle`` applies rules until
nothing changes, so a single event can walk several edges (a suspended
provider whose replacement arrives while verification is still fresh goes
straight back to pending_review) but can never skip one.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Optional

from therapyconnect.models import CredentialingStatus, DecisionType, DocumentType


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[CredentialingStatus, set[CredentialingStatus]] = {
    CredentialingStatus.DRAFT: {
        CredentialingStatus.PENDING_VERIFICATION,
        CredentialingStatus.SUSPENDED_EXPIRED,
    },
    CredentialingStatus.PENDING_VERIFICATION: {
        CredentialingStatus.PENDING_REVIEW,
        CredentialingStatus.SUSPENDED_EXPIRED,
    },
    CredentialingStatus.PENDING_REVIEW: {
        CredentialingStatus.APPROVED,
        CredentialingStatus.REJECTED,
        CredentialingStatus.SUSPENDED_EXPIRED,
    },
    CredentialingStatus.APPROVED: {
        CredentialingStatus.SUSPENDED_EXPIRED,
    },
    CredentialingStatus.SUSPENDED_EXPIRED: {
        CredentialingStatus.PENDING_VERIFICATION,
        CredentialingStatus.DRAFT,
    },
    CredentialingStatus.REJECTED: set(),  # terminal
}

# Statuses in which a provider may change the NPI on file
NPI_EDITABLE_STATUSES: frozenset[CredentialingStatus] = frozenset({
    CredentialingStatus.DRAFT,
    CredentialingStatus.PENDING_VERIFICATION,
    CredentialingStatus.SUSPENDED_EXPIRED,
})


@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None


def validate_transition(
    current: CredentialingStatus, new: CredentialingStatus
) -> TransitionResult:
    if current == new:
        return TransitionResult(allowed=False, reason=f"Profile is already '{current.value}'")
    if new not in VALID_TRANSITIONS.get(current, set()):
        return TransitionResult(
            allowed=False,
            reason=f"Cannot transition from '{current.value}' to '{new.value}'",
        )
    return TransitionResult(allowed=True)


# ---------------------------------------------------------------------------
# Facts
# ---------------------------------------------------------------------------

class NPIStanding(str, enum.Enum):
    MISSING = "missing"      # no NPI submitted
    PENDING = "pending"      # submitted, no registry result yet
    VALID = "valid"
    INVALID = "invalid"      # not found or deactivated


class ExclusionStanding(str, enum.Enum):
    MISSING = "missing"      # never checked for the current name/NPI
    CLEAR = "clear"          # clear and within the freshness window
    STALE = "stale"          # clear but older than the freshness window
    MATCH = "match"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class CredentialingFacts:
    missing_required_types: frozenset[DocumentType] = frozenset()
    expired_required_types: frozenset[DocumentType] = frozenset()
    npi: NPIStanding = NPIStanding.MISSING
    exclusion: ExclusionStanding = ExclusionStanding.MISSING
    # Latest decision recorded in the profile's current review cycle
    cycle_decision: Optional[DecisionType] = None

    @property
    def documents_complete(self) -> bool:
        return not self.missing_required_types and not self.expired_required_types

    @property
    def verification_passed(self) -> bool:
        return self.npi is NPIStanding.VALID and self.exclusion is ExclusionStanding.CLEAR

    @property
    def needs_verification(self) -> bool:
        """True when a verification run could still change the outcome."""
        return self.npi is NPIStanding.PENDING or self.exclusion in (
            ExclusionStanding.MISSING,
            ExclusionStanding.STALE,
            ExclusionStanding.INDETERMINATE,
        )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionStep:
    from_status: CredentialingStatus
    to_status: CredentialingStatus
    rule: str


def next_status(
    current: CredentialingStatus, facts: CredentialingFacts
) -> Optional[TransitionStep]:
    """Apply the first matching rule, or return ``None`` if none applies."""
    S = CredentialingStatus

    if current is S.REJECTED:
        return None

    if facts.expired_required_types and current is not S.SUSPENDED_EXPIRED:
        return TransitionStep(current, S.SUSPENDED_EXPIRED, "document_expired")

    if current is S.SUSPENDED_EXPIRED:
        if facts.documents_complete:
            target = S.DRAFT if facts.npi is NPIStanding.MISSING else S.PENDING_VERIFICATION
            return TransitionStep(current, target, "documents_replaced")
        return None

    if current is S.DRAFT:
        if facts.documents_complete and facts.npi is not NPIStanding.MISSING:
            return TransitionStep(current, S.PENDING_VERIFICATION, "submission_complete")
        return None

    if current is S.PENDING_VERIFICATION:
        if facts.verification_passed:
            return TransitionStep(current, S.PENDING_REVIEW, "verification_passed")
        return None

    if current is S.PENDING_REVIEW:
        if facts.cycle_decision is DecisionType.APPROVE:
            return TransitionStep(current, S.APPROVED, "admin_approved")
        if facts.cycle_decision is DecisionType.REJECT:
            return TransitionStep(current, S.REJECTED, "admin_rejected")
        return None

    return None


def settle(
    current: CredentialingStatus,
    facts: CredentialingFacts,
    *,
    demote_only: bool = False,
) -> list[TransitionStep]:
    """Apply ``next_status`` until a fixpoint.

    Entering pending_review opens a new review cycle, so decisions from an
    earlier cycle are dropped from the facts at that point.  With
    ``demote_only`` only the expiry suspension rule may fire.
    """
    steps: list[TransitionStep] = []
    status = current
    # Each status can be entered at most once per settle
    for _ in range(len(CredentialingStatus)):
        step = next_status(status, facts)
        if step is None:
            break
        if demote_only and step.to_status is not CredentialingStatus.SUSPENDED_EXPIRED:
            break
        if not validate_transition(step.from_status, step.to_status).allowed:
            raise RuntimeError(f"Rule '{step.rule}' produced an illegal transition")
        steps.append(step)
        status = step.to_status
        if status is CredentialingStatus.PENDING_REVIEW:
            facts = replace(facts, cycle_decision=None)
    return steps


# ---------------------------------------------------------------------------
# Blocking reasons
# ---------------------------------------------------------------------------

def blocking_reasons(
    status: CredentialingStatus, facts: CredentialingFacts
) -> list[str]:
    """Why the profile is not moving forward, for the status view."""
    S = CredentialingStatus
    if status in (S.APPROVED, S.REJECTED):
        return []

    reasons: list[str] = []
    if facts.missing_required_types:
        reasons.append("documents_incomplete")
    if facts.expired_required_types:
        reasons.append("documents_expired")

    if facts.npi is NPIStanding.MISSING:
        reasons.append("npi_missing")
    elif facts.npi is NPIStanding.INVALID:
        reasons.append("npi_invalid")
    elif facts.npi is NPIStanding.PENDING and status is not S.DRAFT:
        reasons.append("npi_pending")

    if status is not S.DRAFT:
        if facts.exclusion is ExclusionStanding.MATCH:
            reasons.append("exclusion_match")
        elif facts.exclusion is ExclusionStanding.INDETERMINATE:
            reasons.append("exclusion_indeterminate")
        elif facts.exclusion is ExclusionStanding.STALE:
            reasons.append("exclusion_stale")
        elif facts.exclusion is ExclusionStanding.MISSING and status is S.PENDING_VERIFICATION:
            reasons.append("exclusion_pending")

    if status is S.PENDING_REVIEW and not reasons:
        reasons.append("awaiting_review")
    return reasons
