"""
CONTRIBUTION SERVICE
====================

Contribution workflow:
    pending --confirm--> confirmed   (credits the membership ledger)
    pending --reject---> rejected    (ledger untouched)

CRITICAL RULES:
1. A contribution is created PENDING; it never touches savings until confirmed
2. Confirmation is idempotent: at most one confirmation succeeds
3. The payment gateway confirms through the same path as an admin
"""

import logging
import math
import uuid
from datetime import datetime
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from stokvel.extensions import db
from stokvel.errors import (
    StokvelError, ValidationError, NotFoundError, ConflictError, LedgerError
)
from stokvel.models import (
    Contribution, ContributionStatus, PaymentMethod, MembershipStatus,
    NotificationType, RelatedModel, CONTRIBUTION_TRANSITIONS, check_transition
)
from stokvel.services import (
    membership_service, milestone_service, notification_service
)
from stokvel.services.authorization_service import (
    can_contribute, can_confirm_contributions, require_authorization
)

logger = logging.getLogger(__name__)

PAYMENT_METHODS = tuple(m.value for m in PaymentMethod)


def generate_reference(prefix="TRX"):
    """Unique display reference, e.g. TRX-3F9A0C12B7D4"""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def get_contribution(contribution_id):
    contribution = db.session.get(Contribution, contribution_id)
    if not contribution:
        raise NotFoundError(f"Contribution {contribution_id} not found")
    return contribution


# ============================================================
# VALIDATION
# ============================================================

def validate_contribution(membership, amount, payment_method):
    """
    Check every contribution rule and return the list of violations.
    An empty list means the contribution is acceptable.
    """
    errors = []
    min_contribution = current_app.config['MIN_CONTRIBUTION']

    if membership.status != MembershipStatus.ACTIVE.value:
        errors.append(f"Membership is {membership.status}")

    if not isinstance(amount, (int, float)) or isinstance(amount, bool) \
            or not math.isfinite(amount):
        errors.append("Amount must be a number")
    else:
        remaining = membership.remaining_target
        if amount < min_contribution:
            errors.append(f"Minimum contribution is R{min_contribution}")
        if amount > remaining:
            errors.append(
                f"Amount exceeds remaining target. Max contribution: R{remaining:.2f}"
            )

    if payment_method not in PAYMENT_METHODS:
        errors.append(
            f"Invalid payment method '{payment_method}'. "
            f"Use one of: {', '.join(PAYMENT_METHODS)}"
        )

    return errors


# ============================================================
# ADD CONTRIBUTION
# ============================================================

def add_contribution(membership_id, amount, payment_method, requester_id):
    """
    Record a pending contribution and tell the admins about it.

    Returns: Contribution (PENDING)
    """
    try:
        membership = membership_service.get_membership(membership_id)
        require_authorization(can_contribute, requester_id, membership)

        payment_method = payment_method or PaymentMethod.CARD.value
        errors = validate_contribution(membership, amount, payment_method)
        if errors:
            raise ValidationError(errors)

        contribution = Contribution(
            user_id=membership.user_id,
            group_id=membership.group_id,
            membership_id=membership.id,
            amount=float(amount),
            payment_method=payment_method,
            reference=generate_reference(),
            status=ContributionStatus.PENDING.value
        )
        db.session.add(contribution)
        db.session.flush()

        group = membership.group
        contributor = membership.user

        notification_service.notify_admins(
            f"New contribution of R{amount:,.2f} from {contributor.full_name} to {group.name}",
            NotificationType.CONTRIBUTION.value,
            related_id=contribution.id,
            related_model=RelatedModel.CONTRIBUTION.value
        )
        notification_service.notify(
            requester_id,
            f"Contribution of R{amount:,.2f} to {group.name} submitted. "
            f"Ref: {contribution.reference}",
            NotificationType.CONTRIBUTION.value,
            related_id=contribution.id,
            related_model=RelatedModel.CONTRIBUTION.value
        )

        db.session.commit()

        logger.info("Contribution %s pending: membership=%s amount=%s",
                    contribution.reference, membership.id, amount)
        return contribution

    except StokvelError as e:
        db.session.rollback()
        logger.warning("Contribution refused for membership %s: %s", membership_id, e)
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Contribution failed for membership %s", membership_id)
        raise LedgerError("Failed to add contribution")


# ============================================================
# CONFIRM CONTRIBUTION (ATOMIC)
# ============================================================

def _claim_pending(contribution, new_status, values):
    """
    Move a PENDING contribution to ``new_status`` with a conditional
    UPDATE. Exactly one caller can win; the loser gets ConflictError.
    """
    check_transition('Contribution', CONTRIBUTION_TRANSITIONS, contribution.status, new_status)

    values = dict(values)
    values[Contribution.status] = new_status
    values[Contribution.updated_at] = datetime.utcnow()

    claimed = Contribution.query.filter_by(
        id=contribution.id,
        status=ContributionStatus.PENDING.value
    ).update(values, synchronize_session=False)

    if not claimed:
        raise ConflictError(f"Contribution {contribution.reference} was already processed")

    return db.session.get(Contribution, contribution.id, populate_existing=True)


def confirm_contribution(contribution_id, confirming_admin_id=None):
    """
    Confirm a pending contribution.

    ATOMIC OPERATION:
    1. Claim the contribution (pending -> confirmed)
    2. Increment the membership's saved amount in place
    3. Notify the contributor and announce any milestones

    ``confirming_admin_id`` is None when the payment gateway confirms.

    Returns: Contribution (CONFIRMED)
    """
    try:
        if confirming_admin_id is not None:
            require_authorization(can_confirm_contributions, confirming_admin_id)

        contribution = get_contribution(contribution_id)
        if contribution.membership_id is None:
            raise ConflictError(
                f"Contribution {contribution.reference} no longer belongs to a membership"
            )
        contribution = _claim_pending(contribution, ContributionStatus.CONFIRMED.value, {
            Contribution.confirmed_by: confirming_admin_id,
            Contribution.confirmed_at: datetime.utcnow()
        })

        saved_after = membership_service.increment_saved_amount(
            contribution.membership_id, contribution.amount
        )
        membership = contribution.membership

        notification_service.notify(
            contribution.user_id,
            f"Your contribution of R{contribution.amount:,.2f} has been confirmed",
            NotificationType.CONTRIBUTION.value,
            related_id=contribution.id,
            related_model=RelatedModel.CONTRIBUTION.value
        )
        milestone_service.announce_milestones(membership, contribution.amount, saved_after)

        db.session.commit()

        logger.info("Contribution %s confirmed by %s: membership=%s saved=%s",
                    contribution.reference, confirming_admin_id or 'gateway',
                    membership.id, saved_after)
        return contribution

    except StokvelError as e:
        db.session.rollback()
        logger.warning("Confirmation of contribution %s refused: %s", contribution_id, e)
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Confirmation of contribution %s failed", contribution_id)
        raise LedgerError("Failed to confirm contribution")


def confirm_contribution_by_reference(reference):
    """Payment-gateway entry point: confirm the pending contribution with ``reference``."""
    contribution = Contribution.query.filter_by(reference=reference).first()
    if not contribution:
        raise NotFoundError(f"No contribution with reference {reference}")
    return confirm_contribution(contribution.id, confirming_admin_id=None)


# ============================================================
# REJECT CONTRIBUTION
# ============================================================

def reject_contribution(contribution_id, admin_id=None, reason=None):
    """
    Decline a pending contribution. The ledger is not touched.

    ``admin_id`` is None when the payment gateway reports a failed charge.
    """
    try:
        if admin_id is not None:
            require_authorization(can_confirm_contributions, admin_id)

        contribution = get_contribution(contribution_id)
        contribution = _claim_pending(contribution, ContributionStatus.REJECTED.value, {
            Contribution.rejection_reason: reason
        })

        # Detached history has no one to tell
        if contribution.user_id is not None:
            message = f"Your contribution of R{contribution.amount:,.2f} was declined"
            if reason:
                message = f"{message}: {reason}"
            notification_service.notify(
                contribution.user_id,
                message,
                NotificationType.CONTRIBUTION.value,
                related_id=contribution.id,
                related_model=RelatedModel.CONTRIBUTION.value
            )

        db.session.commit()

        logger.info("Contribution %s rejected by %s", contribution.reference, admin_id or "gateway")
        return contribution

    except StokvelError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Rejection of contribution %s failed", contribution_id)
        raise LedgerError("Failed to reject contribution")


# ============================================================
# LISTINGS
# ============================================================

def _contribution_row(contribution):
    row = contribution.to_dict()
    name = contribution.contributor.full_name if contribution.contributor else ''
    row.update({
        'memberName': name,
        'memberInitials': ''.join(part[0] for part in name.split() if part).upper(),
        'date': contribution.created_at,
        'confirmedByName': contribution.confirmer.full_name if contribution.confirmer else None,
    })
    return row


def _contribution_stats(contributions):
    return {
        'totalCollected': sum(c.amount for c in contributions),
        'totalContributions': len(contributions),
        'confirmedCount': sum(1 for c in contributions
                              if c.status == ContributionStatus.CONFIRMED.value),
        'pendingCount': sum(1 for c in contributions
                            if c.status == ContributionStatus.PENDING.value),
        'uniqueMembers': len({c.user_id for c in contributions}),
    }


def list_group_contributions(membership_id, status=None, member_id=None):
    """All contributions in the membership's group, newest first, with stats."""
    membership = membership_service.get_membership(membership_id)

    query = Contribution.query.filter_by(group_id=membership.group_id)
    if status and status != 'all':
        query = query.filter_by(status=status)
    if member_id:
        query = query.filter_by(user_id=member_id)

    contributions = query.order_by(Contribution.created_at.desc(), Contribution.id.desc()).all()

    return {
        'contributions': [_contribution_row(c) for c in contributions],
        'stats': _contribution_stats(contributions)
    }


def list_all_contributions(group_id=None, status=None):
    """Admin view across every group."""
    query = Contribution.query
    if group_id:
        query = query.filter_by(group_id=group_id)
    if status and status != 'all':
        query = query.filter_by(status=status)

    contributions = query.order_by(Contribution.created_at.desc(), Contribution.id.desc()).all()
    rows = []
    for c in contributions:
        row = _contribution_row(c)
        row['groupName'] = c.group.name
        rows.append(row)
    return rows


def pending_contribution_total():
    total = db.session.query(db.func.sum(Contribution.amount)) \
        .filter(Contribution.status == ContributionStatus.PENDING.value).scalar()
    return total or 0.0
