"""
MEMBERSHIP SERVICE
==================

The membership registry: one ledger row per (user, group).

Handles:
- Creating memberships (uniqueness + capacity)
- Atomic savings increments (confirmed contributions only)
- Outstanding loan principal used for borrowing limits
"""

import logging
from sqlalchemy.exc import IntegrityError
from stokvel.extensions import db
from stokvel.errors import (
    StokvelError, ValidationError, NotFoundError, ConflictError, CapacityError
)
from stokvel.models import (
    Group, Membership, Loan, UserRole, MembershipStatus, OUTSTANDING_LOAN_STATUSES
)

logger = logging.getLogger(__name__)


# ============================================================
# LOOKUPS
# ============================================================

def get_membership(membership_id):
    membership = db.session.get(Membership, membership_id)
    if not membership:
        raise NotFoundError(f"Membership {membership_id} not found")
    return membership


def find_membership(user_id, group_id):
    return Membership.query.filter_by(user_id=user_id, group_id=group_id).first()


def list_memberships_for_user(user_id):
    return Membership.query.filter_by(user_id=user_id).order_by(Membership.id).all()


def list_group_memberships(group_id, active_only=True):
    query = Membership.query.filter_by(group_id=group_id)
    if active_only:
        query = query.filter_by(status=MembershipStatus.ACTIVE.value)
    return query.order_by(Membership.id).all()


def count_active_members(group_id):
    return Membership.query.filter_by(
        group_id=group_id,
        status=MembershipStatus.ACTIVE.value
    ).count()


def total_saved_for_group(group_id):
    total = db.session.query(db.func.sum(Membership.saved_amount)) \
        .filter(Membership.group_id == group_id).scalar()
    return total or 0.0


def has_capacity(group):
    return count_active_members(group.id) < group.max_members


# ============================================================
# CREATE MEMBERSHIP
# ============================================================

def add_membership(user_id, group_id, role=UserRole.MEMBER.value, target_amount=None):
    """
    Stage a new membership in the current session without committing.

    Raises ConflictError for a duplicate (user, group) and CapacityError
    when the group already holds ``max_members`` active memberships.
    """
    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError(f"Group {group_id} not found")

    if role not in (UserRole.MEMBER.value, UserRole.ADMIN.value):
        raise ValidationError(f"Invalid membership role '{role}'")

    if find_membership(user_id, group_id):
        raise ConflictError(f"User {user_id} is already a member of {group.name}")

    if not has_capacity(group):
        raise CapacityError(f"{group.name} is at full capacity ({group.max_members} members)")

    membership = Membership(
        user_id=user_id,
        group_id=group_id,
        role=role,
        # Snapshot of the group target at join time
        target_amount=group.target_amount if target_amount is None else target_amount,
        saved_amount=0.0,
        status=MembershipStatus.ACTIVE.value
    )
    db.session.add(membership)
    db.session.flush()

    return membership


def create_membership(user_id, group_id, role=UserRole.MEMBER.value, target_amount=None):
    """Create and commit a membership."""
    try:
        membership = add_membership(user_id, group_id, role, target_amount)
        db.session.commit()

        logger.info("Membership %s created: user=%s group=%s",
                    membership.id, user_id, group_id)
        return membership

    except StokvelError:
        db.session.rollback()
        raise
    except IntegrityError:
        # Lost a race against the unique constraint
        db.session.rollback()
        raise ConflictError(f"User {user_id} is already a member of group {group_id}")


# ============================================================
# LEDGER INCREMENT (ATOMIC)
# ============================================================

def increment_saved_amount(membership_id, delta):
    """
    Add ``delta`` to ``saved_amount`` in place.

    Executes ``UPDATE memberships SET saved_amount = saved_amount + :delta,
    version = version + 1`` so concurrent confirmations never lose an
    update, and any loan request racing with it sees a stale version.

    Does NOT commit. Returns the post-increment balance.
    """
    if delta is None or delta <= 0:
        raise ValidationError("Savings increment must be greater than 0")

    updated = Membership.query.filter_by(id=membership_id).update({
        Membership.saved_amount: Membership.saved_amount + delta,
        Membership.version: Membership.version + 1
    }, synchronize_session=False)

    if not updated:
        raise NotFoundError(f"Membership {membership_id} not found")

    # Reload so the identity map reflects the new balance and version
    membership = db.session.get(Membership, membership_id, populate_existing=True)
    return membership.saved_amount


# ============================================================
# OUTSTANDING LOANS
# ============================================================

def find_outstanding_loan_principal_sum(membership_id):
    """Sum of principals for loans still counting against the limit."""
    total = db.session.query(db.func.sum(Loan.amount)).filter(
        Loan.membership_id == membership_id,
        Loan.status.in_(OUTSTANDING_LOAN_STATUSES)
    ).scalar()
    return total or 0.0
