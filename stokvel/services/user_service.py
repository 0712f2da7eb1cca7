"""
USER SERVICE
============

Registration, credential checks and profile maintenance. New users wait
in 'pending' until an admin approves them (see admin_service.approve_user).
"""

import logging
from datetime import datetime
from sqlalchemy.exc import IntegrityError
from stokvel.extensions import db
from stokvel.errors import (
    StokvelError, ValidationError, NotFoundError, ConflictError, AuthorizationError
)
from stokvel.models import User, Group, UserRole, UserStatus

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def find_user_by_email(email):
    return User.query.filter_by(email=(email or '').strip().lower()).first()


def register_user(full_name, email, phone, password, preferred_group_ids=None,
                  message='', role=UserRole.MEMBER.value, status=UserStatus.PENDING.value):
    """
    Create a user account. Members register as 'pending' and record the
    groups they would like to join.
    """
    email = (email or '').strip().lower()
    errors = []
    if not (full_name or '').strip():
        errors.append("Full name is required")
    if not email or '@' not in email:
        errors.append("A valid email is required")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if role not in [r.value for r in UserRole]:
        errors.append(f"Invalid role '{role}'")

    try:
        if errors:
            raise ValidationError(errors)

        if find_user_by_email(email):
            raise ConflictError("Email already registered")

        user = User(
            full_name=full_name.strip(),
            email=email,
            phone=(phone or '').strip(),
            role=role,
            status=status,
            message=message or ''
        )
        user.set_password(password)

        if preferred_group_ids:
            user.preferred_groups = Group.query.filter(Group.id.in_(preferred_group_ids)).all()

        db.session.add(user)
        db.session.commit()

        logger.info("User %s registered (%s)", user.id, user.status)
        return user

    except StokvelError:
        db.session.rollback()
        raise
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered")


def authenticate(email, password):
    """Return the user for valid credentials; only active users may sign in."""
    user = find_user_by_email(email)
    if not user or not user.check_password(password or ''):
        raise AuthorizationError("Invalid email or password")

    if user.status != UserStatus.ACTIVE.value:
        raise AuthorizationError(f"Your account is {user.status}")

    user.last_active = datetime.utcnow()
    db.session.commit()
    return user


# ============================================================
# PROFILE
# ============================================================

def update_profile(user_id, full_name=None, email=None, phone=None):
    """Change the user's own name, email or phone. Omitted fields stay as they are."""
    try:
        user = get_user(user_id)
        errors = []

        if full_name is not None and not str(full_name).strip():
            errors.append("Name cannot be empty")
        if phone is not None and not str(phone).strip():
            errors.append("Phone cannot be empty")
        if email is not None:
            email = str(email).strip().lower()
            if '@' not in email:
                errors.append("A valid email is required")
        if errors:
            raise ValidationError(errors)

        if email and email != user.email:
            if find_user_by_email(email):
                raise ConflictError("Email already in use")
            user.email = email
        if full_name is not None:
            user.full_name = str(full_name).strip()
        if phone is not None:
            user.phone = str(phone).strip()

        db.session.commit()

        logger.info("User %s updated their profile", user.id)
        return user

    except StokvelError:
        db.session.rollback()
        raise
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already in use")


def change_password(user_id, current_password, new_password):
    try:
        user = get_user(user_id)

        if not user.check_password(current_password or ''):
            raise ValidationError("Current password is incorrect")
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")

        user.set_password(new_password)
        db.session.commit()

        logger.info("User %s changed their password", user.id)
        return user

    except StokvelError:
        db.session.rollback()
        raise
