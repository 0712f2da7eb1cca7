"""
GROUP SERVICE
=============

Stokvel definitions: savings target, capacity and loan terms.
"""

import logging
import math
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from stokvel.extensions import db
from stokvel.errors import StokvelError, ValidationError, NotFoundError, ConflictError, LedgerError
from stokvel.models import (
    Group, GroupStatus, GroupType, GroupCycle, Contribution, Loan,
    OUTSTANDING_LOAN_STATUSES, user_preferred_groups
)
from stokvel.services import membership_service

logger = logging.getLogger(__name__)

# Business parameters an admin may change after creation
EDITABLE_FIELDS = (
    'name', 'group_type', 'description', 'target_amount', 'max_members',
    'interest_rate', 'overdue_interest_rate', 'loan_percentage_limit',
    'loan_repayment_days', 'cycle', 'meeting_day', 'next_payout', 'status'
)


def _is_number(value, integral=False):
    if isinstance(value, bool):
        return False
    if integral:
        return isinstance(value, int)
    return isinstance(value, (int, float)) and math.isfinite(value)


def _validate_group_fields(fields):
    errors = []

    if 'name' in fields:
        name = fields['name']
        if not isinstance(name, str) or not name.strip():
            errors.append("Group name is required")

    if 'target_amount' in fields:
        target = fields['target_amount']
        if not _is_number(target):
            errors.append("Target amount must be a number")
        elif target <= 0:
            errors.append("Target amount must be greater than 0")

    if 'max_members' in fields:
        max_members = fields['max_members']
        if not _is_number(max_members, integral=True):
            errors.append("Max members must be a whole number")
        elif max_members < 1:
            errors.append("A group needs room for at least 1 member")

    for key, label in (('interest_rate', 'Interest rate'),
                       ('overdue_interest_rate', 'Overdue interest rate')):
        if key in fields:
            if not _is_number(fields[key]):
                errors.append(f"{label} must be a number")
            elif fields[key] < 0:
                errors.append(f"{label} cannot be negative")

    if 'loan_percentage_limit' in fields:
        limit = fields['loan_percentage_limit']
        if not _is_number(limit) or not 0 <= limit <= 100:
            errors.append("Loan percentage limit must be between 0 and 100")

    if 'loan_repayment_days' in fields:
        days = fields['loan_repayment_days']
        if not _is_number(days, integral=True):
            errors.append("Loan repayment window must be a whole number of days")
        elif days < 1:
            errors.append("Loan repayment window must be at least 1 day")

    choices = (
        ('group_type', GroupType, 'group type'),
        ('cycle', GroupCycle, 'cycle'),
        ('status', GroupStatus, 'status'),
    )
    for key, enum_cls, label in choices:
        if key in fields and fields[key] not in [e.value for e in enum_cls]:
            errors.append(f"Invalid {label} '{fields[key]}'")

    return errors


def get_group(group_id):
    group = db.session.get(Group, group_id)
    if not group:
        raise NotFoundError(f"Group {group_id} not found")
    return group


def list_groups():
    return Group.query.order_by(Group.created_at.desc(), Group.id.desc()).all()


# ============================================================
# CREATE / UPDATE
# ============================================================

def create_group(name, target_amount, max_members, created_by=None, **options):
    """Create a stokvel; loan terms default from config."""
    config = current_app.config
    fields = {
        'name': name,
        'target_amount': target_amount,
        'max_members': max_members,
        'group_type': options.pop('group_type', GroupType.TRADITIONAL.value),
        'interest_rate': options.pop('interest_rate', config['DEFAULT_INTEREST_RATE']),
        'overdue_interest_rate': options.pop('overdue_interest_rate',
                                             config['DEFAULT_OVERDUE_INTEREST_RATE']),
        'loan_percentage_limit': options.pop('loan_percentage_limit',
                                             config['DEFAULT_LOAN_PERCENTAGE_LIMIT']),
        'loan_repayment_days': options.pop('loan_repayment_days',
                                           config['DEFAULT_LOAN_REPAYMENT_DAYS']),
        'cycle': options.pop('cycle', GroupCycle.WEEKLY.value),
        'status': options.pop('status', GroupStatus.ACTIVE.value),
    }
    fields.update({k: v for k, v in options.items() if k in EDITABLE_FIELDS})

    try:
        errors = _validate_group_fields(fields)
        if errors:
            raise ValidationError(errors)

        group = Group(created_by=created_by, **fields)
        db.session.add(group)
        db.session.commit()

        logger.info("Group %s created: %s", group.id, group.name)
        return group

    except StokvelError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Group creation failed")
        raise LedgerError("Failed to create group")


def update_group(group_id, changes):
    """Apply admin edits to business parameters. Unknown keys are rejected."""
    try:
        group = get_group(group_id)

        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        errors = [f"Field '{key}' cannot be changed" for key in unknown]
        errors.extend(_validate_group_fields(changes))
        if errors:
            raise ValidationError(errors)

        for key, value in changes.items():
            setattr(group, key, value)
        db.session.commit()

        logger.info("Group %s updated: %s", group.id, ', '.join(sorted(changes)))
        return group

    except StokvelError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Group %s update failed", group_id)
        raise LedgerError("Failed to update group")


# ============================================================
# DELETE
# ============================================================

def delete_group(group_id):
    """
    Remove a stokvel that was never used.

    Blocked while the group has memberships or outstanding loans, and while
    any contribution or loan history points at it. A group with history is
    retired by setting its status to inactive.
    """
    try:
        group = get_group(group_id)

        members = group.memberships.count()
        if members:
            raise ConflictError(f"Cannot delete group with {members} membership(s)")

        outstanding = Loan.query.filter(
            Loan.group_id == group.id,
            Loan.status.in_(OUTSTANDING_LOAN_STATUSES)
        ).count()
        if outstanding:
            raise ConflictError(f"Cannot delete group with {outstanding} outstanding loan(s)")

        if Contribution.query.filter_by(group_id=group.id).count() \
                or Loan.query.filter_by(group_id=group.id).count():
            raise ConflictError(
                "Cannot delete group with ledger history. Set its status to inactive instead."
            )

        db.session.execute(
            user_preferred_groups.delete().where(user_preferred_groups.c.group_id == group.id)
        )
        db.session.delete(group)
        db.session.commit()

        logger.info("Group %s deleted", group_id)
        return True

    except StokvelError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Deletion of group %s failed", group_id)
        raise LedgerError("Failed to delete group")


# ============================================================
# SUMMARY
# ============================================================

def get_group_summary(group_id):
    group = get_group(group_id)
    total_saved = membership_service.total_saved_for_group(group.id)
    group_target = group.group_target
    progress = round(total_saved / group_target * 100) if group_target > 0 else 0

    summary = group.to_dict()
    summary.update({
        'totalSaved': total_saved,
        'progress': progress,
        'memberCount': membership_service.count_active_members(group.id),
        'members': [
            {
                'membershipId': m.id,
                'userId': m.user_id,
                'name': m.user.full_name,
                'role': m.role,
                'savedAmount': m.saved_amount,
                'targetAmount': m.target_amount,
                'progress': round(m.saved_amount / m.target_amount * 100)
                if m.target_amount > 0 else 0,
            }
            for m in membership_service.list_group_memberships(group.id)
        ]
    })
    return summary
