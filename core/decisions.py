"""
Risk decisions.

Maps automated risk statuses onto listing publication statuses and applies
admin overrides. Overrides are idempotent: applying the same decision twice
leaves the same final state (the review timestamp is refreshed).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.audit import ActorType, AuditActions, AuditLog
from core.inventory import InventoryRepository
from core.models import (
    RISK_STATUS_TO_LISTING_STATUS,
    ListingStatus,
    RiskStatus,
)
from core.scoring import RiskAssessment


logger = logging.getLogger(__name__)


class Decision(Enum):
    """Admin override decision."""

    ALLOW = "allow"
    HOLD = "hold"
    REJECT = "reject"


# decision -> (risk status, listing status)
OVERRIDE_OUTCOMES: dict[Decision, tuple[RiskStatus, ListingStatus]] = {
    Decision.ALLOW: (RiskStatus.OK, ListingStatus.APPROVED),
    Decision.HOLD: (RiskStatus.HOLD, ListingStatus.HOLD_FOR_REVIEW),
    Decision.REJECT: (RiskStatus.REVIEW_REQUIRED, ListingStatus.REJECTED),
}


def listing_status_for(assessment: Optional[RiskAssessment]) -> ListingStatus:
    """
    Publication status for an automated risk decision.

    No assessment (scoring disabled) publishes directly.
    """
    if assessment is None:
        return ListingStatus.PUBLISHED
    return RISK_STATUS_TO_LISTING_STATUS[assessment.status]


def apply_automated_decision(
    inventory: InventoryRepository,
    listing_id: str,
    assessment: Optional[RiskAssessment],
) -> ListingStatus:
    """Move a freshly scored listing to its automated publication status."""
    status = listing_status_for(assessment)
    inventory.update_listing_status(listing_id, status)
    return status


@dataclass(frozen=True)
class OverrideResult:
    listing_id: str
    decision: Decision
    risk_status: RiskStatus
    final_status: ListingStatus


class OverrideService:
    """Applies admin decisions to scored listings."""

    def __init__(self, inventory: InventoryRepository, audit_log: AuditLog):
        self.inventory = inventory
        self.audit_log = audit_log

    def apply(
        self,
        listing_id: str,
        decision: Decision,
        admin_id: str,
        notes: Optional[str] = None,
    ) -> OverrideResult:
        """
        Override the risk decision for a listing.

        Args:
            listing_id: Listing to decide.
            decision: allow, hold or reject (enum or its string value).
            admin_id: Reviewer recorded on the risk row and the audit entry.
            notes: Optional review notes.

        Raises:
            ListingNotFoundError: If the listing does not exist
            RiskScoreNotFoundError: If the listing has never been scored
        """
        decision = Decision(decision)
        risk_status, listing_status = OVERRIDE_OUTCOMES[decision]

        self.inventory.require_listing(listing_id)
        self.inventory.record_review(listing_id, risk_status, admin_id, notes)
        self.inventory.update_listing_status(listing_id, listing_status)

        self.audit_log.record(
            actor_type=ActorType.USER,
            actor_id=admin_id,
            action=AuditActions.ADMIN_OVERRIDE,
            entity="listing",
            entity_id=listing_id,
            payload={
                "decision": decision.value,
                "risk_status": risk_status.value,
                "final_status": listing_status.value,
                "notes": notes,
            },
        )

        logger.info(
            "Admin override applied: listing=%s decision=%s admin=%s final_status=%s",
            listing_id,
            decision.value,
            admin_id,
            listing_status.value,
        )
        return OverrideResult(
            listing_id=listing_id,
            decision=decision,
            risk_status=risk_status,
            final_status=listing_status,
        )
