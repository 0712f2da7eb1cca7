"""
ADMIN SERVICE
=============

Handles:
- Approving pending registrations and materializing their memberships
- User status changes and deletion (blocked by outstanding loans)
- Direct group assignment
- Dashboard overview
"""

import logging
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
from stokvel.extensions import db
from stokvel.errors import (
    StokvelError, ValidationError, NotFoundError, ConflictError, CapacityError, LedgerError
)
from stokvel.models import (
    User, Group, Contribution, Loan, UserRole, UserStatus, GroupStatus, ContributionStatus,
    NotificationType, RelatedModel
)
from stokvel.services import (
    contribution_service, loan_service, membership_service,
    notification_service, user_service
)

logger = logging.getLogger(__name__)

DELETED_MEMBER_REASON = "Member account deleted"


# ============================================================
# APPROVE USER
# ============================================================

def approve_user(user_id, explicit_group_ids=None):
    """
    Activate a pending user and enrol them in groups.

    Target groups are ``explicit_group_ids`` when given, otherwise the
    groups the user picked at registration. Best effort: a group that is
    missing, full or already joined is skipped without error.

    Returns: dict with the user and the memberships actually created
    """
    try:
        user = user_service.get_user(user_id)
        if user.status != UserStatus.PENDING.value:
            raise ConflictError(f"User is already {user.status}")

        user.transition_to(UserStatus.ACTIVE.value)

        if explicit_group_ids:
            target_group_ids = list(explicit_group_ids)
        else:
            target_group_ids = [group.id for group in user.preferred_groups]

        created = []
        for group_id in target_group_ids:
            try:
                membership = membership_service.add_membership(user.id, group_id)
            except (NotFoundError, ConflictError, CapacityError) as e:
                logger.info("Approval of user %s skipped group %s: %s", user.id, group_id, e)
                continue
            created.append(membership)

        notification_service.notify(
            user.id,
            f"Welcome! You've been approved and added to {len(created)} group(s).",
            NotificationType.APPROVAL.value,
            related_id=user.id,
            related_model=RelatedModel.USER.value
        )

        db.session.commit()

        logger.info("User %s approved with %s membership(s)", user.id, len(created))
        return {
            'user': user,
            'memberships': created,
            'membershipsCreated': len(created)
        }

    except StokvelError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Approval of user %s failed", user_id)
        raise LedgerError("Failed to approve user")


# ============================================================
# USER STATUS / DELETE
# ============================================================

def update_user_status(user_id, status):
    try:
        if status not in [s.value for s in UserStatus]:
            raise ValidationError(f"Invalid status '{status}'")

        user = user_service.get_user(user_id)
        user.transition_to(status)
        db.session.commit()

        logger.info("User %s status set to %s", user.id, status)
        return user

    except StokvelError:
        db.session.rollback()
        raise


def delete_user(user_id):
    """
    Remove a member with their memberships and notifications.

    Blocked while the user has any active or overdue loan. Their pending
    contributions are rejected. Contributions and repaid loans are kept,
    detached from the user.
    """
    try:
        user = user_service.get_user(user_id)

        if user.role == UserRole.ADMIN.value:
            raise ConflictError("Cannot delete admin users")

        outstanding = loan_service.count_outstanding_loans_for_user(user.id)
        if outstanding > 0:
            raise ConflictError(f"Cannot delete user with {outstanding} outstanding loan(s)")

        # Nobody is left to settle pending contributions
        Contribution.query.filter_by(
            user_id=user.id, status=ContributionStatus.PENDING.value
        ).update({
            Contribution.status: ContributionStatus.REJECTED.value,
            Contribution.rejection_reason: DELETED_MEMBER_REASON,
            Contribution.updated_at: datetime.utcnow(),
        }, synchronize_session=False)

        # Contributions and loans stay as group history
        for model in (Contribution, Loan):
            model.query.filter(model.user_id == user.id).update(
                {model.user_id: None, model.membership_id: None},
                synchronize_session=False
            )

        db.session.delete(user)
        db.session.commit()

        logger.info("User %s deleted", user_id)
        return True

    except StokvelError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Deletion of user %s failed", user_id)
        raise LedgerError("Failed to delete user")


# ============================================================
# DIRECT ASSIGNMENT
# ============================================================

def add_user_to_group(user_id, group_id, role=UserRole.MEMBER.value):
    """Assign a user to a group; duplicate and capacity errors surface."""
    user_service.get_user(user_id)
    return membership_service.create_membership(user_id, group_id, role=role)


# ============================================================
# LISTINGS
# ============================================================

def list_users(status=None, search=None, group_id=None):
    query = User.query
    if status and status != 'all':
        query = query.filter_by(status=status)
    if search:
        pattern = f"%{search}%"
        query = query.filter(db.or_(User.full_name.ilike(pattern), User.email.ilike(pattern)))

    users = []
    for user in query.order_by(User.created_at.desc(), User.id.desc()).all():
        profiles = [
            {
                'id': m.id,
                'groupId': m.group_id,
                'groupName': m.group.name,
                'role': m.role,
                'targetAmount': m.target_amount,
                'savedAmount': m.saved_amount,
                'joinedDate': m.created_at,
            }
            for m in membership_service.list_memberships_for_user(user.id)
        ]
        row = user.to_dict()
        row['profiles'] = profiles
        users.append(row)

    # Pending users stay visible so they can be assigned
    if group_id:
        users = [
            u for u in users
            if any(p['groupId'] == group_id for p in u['profiles'])
            or u['status'] == UserStatus.PENDING.value
        ]
    return users


def get_admin_overview(now=None):
    now = now or datetime.utcnow()

    def count_users(status=None):
        query = User.query
        if status:
            query = query.filter_by(status=status)
        return query.count()

    def count_groups(status=None):
        query = Group.query
        if status:
            query = query.filter_by(status=status)
        return query.count()

    total_contributed = db.session.query(db.func.sum(Contribution.amount)).scalar() or 0.0

    return {
        'users': {
            'total': count_users(),
            'active': count_users(UserStatus.ACTIVE.value),
            'pending': count_users(UserStatus.PENDING.value),
        },
        'groups': {
            'total': count_groups(),
            'active': count_groups(GroupStatus.ACTIVE.value),
            'upcoming': count_groups(GroupStatus.UPCOMING.value),
        },
        'contributions': {
            'totalAmount': total_contributed,
            'count': Contribution.query.count(),
            'pending': Contribution.query.filter_by(
                status=ContributionStatus.PENDING.value).count(),
            'pendingAmount': contribution_service.pending_contribution_total(),
        },
        'loans': loan_service.loan_portfolio_counts(now),
    }
