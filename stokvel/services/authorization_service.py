"""
CENTRALIZED AUTHORIZATION SERVICE
==================================

All permission checks live here.
Checks return ``(allowed, reason)``; ``require_authorization`` turns a
refusal into an AuthorizationError.
"""

from stokvel.extensions import db
from stokvel.errors import AuthorizationError
from stokvel.models import User, UserRole, UserStatus


def is_admin(user_id):
    """Check if user is an active system admin"""
    user = db.session.get(User, user_id)
    return bool(user and user.role == UserRole.ADMIN.value
                and user.status == UserStatus.ACTIVE.value)


# ============================================================
# OWNERSHIP CHECKS
# ============================================================

def can_contribute(user_id, membership):
    """Only the member who owns the membership can contribute to it."""
    if membership.user_id != user_id:
        return False, "Not authorized to contribute to this membership"
    return True, None


def can_borrow(user_id, membership):
    if membership.user_id != user_id:
        return False, "Not authorized for this membership"
    return True, None


def can_repay(user_id, loan):
    if loan.user_id != user_id:
        return False, "Not authorized to repay this loan"
    return True, None


def can_view_membership(user_id, membership):
    """Owners and admins can read a membership's ledger."""
    if membership.user_id == user_id or is_admin(user_id):
        return True, None
    return False, "Not authorized to view this membership"


def can_confirm_contributions(user_id):
    if not is_admin(user_id):
        return False, "Only an admin can review contributions"
    return True, None


# ============================================================
# HELPER FUNCTION: REQUIRE AUTHORIZATION
# ============================================================

def require_authorization(check_func, *args, error_class=AuthorizationError):
    """
    Wrapper to raise exception if authorization fails.

    Usage:
        require_authorization(can_repay, user_id, loan)
    """
    allowed, reason = check_func(*args)
    if not allowed:
        raise error_class(reason)
    return True
