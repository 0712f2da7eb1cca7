"""
MILESTONE SERVICE
=================

Decides who hears about a savings milestone after a ledger increment.

The decision functions are pure; ``announce_milestones`` reads the
post-commit state and appends notifications to the outbox.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from stokvel.models import NotificationType, RelatedModel
from stokvel.services import membership_service, notification_service

logger = logging.getLogger(__name__)


def individual_target_reached(saved_amount, target_amount):
    return saved_amount >= target_amount


def group_target_reached(total_saved, group_target):
    return total_saved >= group_target


def crossed(before, after, target):
    """True only for the increment that first meets ``target``."""
    return not individual_target_reached(before, target) and \
        individual_target_reached(after, target)


@dataclass
class MilestonePlan:
    individual_recipient: Optional[int] = None
    group_recipients: List[int] = field(default_factory=list)

    @property
    def is_empty(self):
        return self.individual_recipient is None and not self.group_recipients


def plan_milestones(contributor_id, saved_before, saved_after, member_target,
                    group_before, group_after, group_target, active_member_ids):
    """
    Work out milestone recipients for one confirmed increment.

    The contributor gets the individual notice when their own balance first
    meets their target. The group notice goes to every other active member
    when the group total first meets the group target.
    """
    plan = MilestonePlan()

    if crossed(saved_before, saved_after, member_target):
        plan.individual_recipient = contributor_id

    if crossed(group_before, group_after, group_target):
        plan.group_recipients = [
            user_id for user_id in active_member_ids
            if user_id != contributor_id
        ]

    return plan


def announce_milestones(membership, delta, saved_after):
    """
    Append milestone notifications for a confirmed increment of ``delta``
    that left ``membership`` at ``saved_after``. Does NOT commit.
    """
    group = membership.group
    group_after = membership_service.total_saved_for_group(group.id)
    active_member_ids = [
        m.user_id for m in membership_service.list_group_memberships(group.id)
    ]

    plan = plan_milestones(
        contributor_id=membership.user_id,
        saved_before=saved_after - delta,
        saved_after=saved_after,
        member_target=membership.target_amount,
        group_before=group_after - delta,
        group_after=group_after,
        group_target=group.group_target,
        active_member_ids=active_member_ids
    )

    if plan.individual_recipient is not None:
        notification_service.notify(
            plan.individual_recipient,
            f"Congratulations! You have reached your savings target of "
            f"R{membership.target_amount:,.2f} in {group.name}.",
            NotificationType.MILESTONE.value,
            related_id=group.id,
            related_model=RelatedModel.GROUP.value
        )
        logger.info("Individual target reached: membership=%s", membership.id)

    if plan.group_recipients:
        notification_service.notify_many(
            plan.group_recipients,
            f"{group.name} has reached its group target of R{group.group_target:,.2f}!",
            NotificationType.MILESTONE.value,
            related_id=group.id,
            related_model=RelatedModel.GROUP.value
        )
        logger.info("Group target reached: group=%s (%s recipients)",
                    group.id, len(plan.group_recipients))

    return plan
