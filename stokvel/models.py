import enum
import math
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin
from stokvel.extensions import db
from stokvel.errors import ConflictError


# ============================================================
# STATUS TYPES
# ============================================================

class UserRole(str, enum.Enum):
    MEMBER = 'member'
    ADMIN = 'admin'


class UserStatus(str, enum.Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class GroupStatus(str, enum.Enum):
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    UPCOMING = 'upcoming'


class GroupType(str, enum.Enum):
    TRADITIONAL = 'traditional'
    FLEXIBLE = 'flexible'


class GroupCycle(str, enum.Enum):
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    QUARTERLY = 'quarterly'


class MembershipStatus(str, enum.Enum):
    PENDING = 'pending'
    ACTIVE = 'active'
    INACTIVE = 'inactive'


class ContributionStatus(str, enum.Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    REJECTED = 'rejected'


class PaymentMethod(str, enum.Enum):
    CARD = 'card'
    BANK = 'bank'
    CASH = 'cash'
    MOBILE = 'mobile'


class LoanStatus(str, enum.Enum):
    ACTIVE = 'active'
    OVERDUE = 'overdue'
    REPAID = 'repaid'


class NotificationType(str, enum.Enum):
    CONTRIBUTION = 'contribution'
    LOAN = 'loan'
    APPROVAL = 'approval'
    MILESTONE = 'milestone'
    SYSTEM = 'system'
    REMINDER = 'reminder'


class RelatedModel(str, enum.Enum):
    CONTRIBUTION = 'Contribution'
    LOAN = 'Loan'
    GROUP = 'Group'
    USER = 'User'


USER_TRANSITIONS = {
    UserStatus.PENDING.value: {UserStatus.ACTIVE.value, UserStatus.INACTIVE.value},
    UserStatus.ACTIVE.value: {UserStatus.INACTIVE.value},
    UserStatus.INACTIVE.value: {UserStatus.ACTIVE.value},
}

CONTRIBUTION_TRANSITIONS = {
    ContributionStatus.PENDING.value: {
        ContributionStatus.CONFIRMED.value,
        ContributionStatus.REJECTED.value
    },
    ContributionStatus.CONFIRMED.value: set(),
    ContributionStatus.REJECTED.value: set(),
}

LOAN_TRANSITIONS = {
    LoanStatus.ACTIVE.value: {LoanStatus.REPAID.value},
    LoanStatus.OVERDUE.value: {LoanStatus.REPAID.value},
    LoanStatus.REPAID.value: set(),
}

# Loans that still count against the borrowing limit
OUTSTANDING_LOAN_STATUSES = (LoanStatus.ACTIVE.value, LoanStatus.OVERDUE.value)


def check_transition(kind, table, current, new):
    """Raise ConflictError unless ``current -> new`` is listed in ``table``."""
    if new not in table.get(current, set()):
        if current == new:
            raise ConflictError(f"{kind} is already {current}")
        raise ConflictError(f"{kind} cannot move from {current} to {new}")


def derive_loan_status(status, due_date, now):
    """
    Display status of a loan at ``now``.

    An active loan past its due date is shown as overdue. The transition
    is never written back; repayment is the only persisted change.
    """
    if status == LoanStatus.ACTIVE.value and due_date is not None and now > due_date:
        return LoanStatus.OVERDUE.value
    return status


def days_between(start, end):
    """Whole days from ``start`` to ``end``, rounded up (negative when end < start)."""
    return math.ceil((end - start).total_seconds() / 86400)


# ============================================================
# USER MODEL
# ============================================================

user_preferred_groups = db.Table(
    'user_preferred_groups',
    db.Column('user_id', db.Integer, db.ForeignKey('users.id'), primary_key=True),
    db.Column('group_id', db.Integer, db.ForeignKey('groups.id'), primary_key=True)
)


class User(UserMixin, db.Model):
    """
    A registered person. Starts as 'pending' until an admin approves
    the registration and assigns memberships.
    """
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    phone = db.Column(db.String(50), nullable=False, default='')
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), default=UserRole.MEMBER.value, nullable=False)
    status = db.Column(db.String(20), default=UserStatus.PENDING.value, nullable=False)
    message = db.Column(db.Text, default='')
    last_active = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    memberships = db.relationship('Membership', backref='user', lazy='dynamic',
                                  cascade='all, delete-orphan')
    notifications = db.relationship('Notification', backref='user', lazy='dynamic',
                                    cascade='all, delete-orphan')
    preferred_groups = db.relationship('Group', secondary=user_preferred_groups, lazy='select')

    def set_password(self, password):
        """Hash and set the user's password."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password against stored hash."""
        return check_password_hash(self.password_hash, password)

    @property
    def is_active(self):
        return self.status == UserStatus.ACTIVE.value

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN.value

    def transition_to(self, new_status):
        check_transition('User', USER_TRANSITIONS, self.status, new_status)
        self.status = new_status

    def to_dict(self):
        return {
            'id': self.id,
            'fullName': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'role': self.role,
            'status': self.status,
            'joinedDate': self.created_at,
            'lastActive': self.last_active,
        }

    def __repr__(self):
        return f'<User {self.email} {self.status}>'


# ============================================================
# GROUP (STOKVEL) MODEL
# ============================================================

class Group(db.Model):
    """
    A savings programme. ``target_amount`` is per member; the whole
    group aims for ``target_amount * max_members``.
    """
    __tablename__ = 'groups'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    group_type = db.Column(db.String(20), default=GroupType.TRADITIONAL.value, nullable=False)
    description = db.Column(db.Text, default='')
    target_amount = db.Column(db.Float, nullable=False, default=0.0)
    max_members = db.Column(db.Integer, nullable=False, default=1)

    # Loan terms
    interest_rate = db.Column(db.Float, nullable=False, default=30.0)
    overdue_interest_rate = db.Column(db.Float, nullable=False, default=60.0)
    loan_percentage_limit = db.Column(db.Float, nullable=False, default=50.0)
    loan_repayment_days = db.Column(db.Integer, nullable=False, default=30)

    cycle = db.Column(db.String(20), default=GroupCycle.WEEKLY.value, nullable=False)
    meeting_day = db.Column(db.String(50), default='')
    next_payout = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(20), default=GroupStatus.ACTIVE.value, nullable=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    memberships = db.relationship('Membership', backref='group', lazy='dynamic',
                                  cascade='all, delete-orphan')

    @property
    def group_target(self):
        return self.target_amount * self.max_members

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.group_type,
            'description': self.description,
            'targetAmount': self.target_amount,
            'groupTarget': self.group_target,
            'maxMembers': self.max_members,
            'interestRate': self.interest_rate,
            'overdueInterestRate': self.overdue_interest_rate,
            'loanPercentageLimit': self.loan_percentage_limit,
            'loanRepaymentDays': self.loan_repayment_days,
            'cycle': self.cycle,
            'meetingDay': self.meeting_day,
            'nextPayout': self.next_payout,
            'status': self.status,
            'createdBy': self.created_by,
        }

    def __repr__(self):
        return f'<Group {self.name}>'


# ============================================================
# MEMBERSHIP MODEL (THE LEDGER ROW)
# ============================================================

class Membership(db.Model):
    """
    A user's enrolment in one group, carrying their savings ledger.

    CRITICAL: ``saved_amount`` is ONLY changed by
    membership_service.increment_saved_amount, which is called ONLY when a
    contribution is confirmed.

    ``version`` is an optimistic-lock counter. Every ORM update of the row
    checks and bumps it; the atomic savings increment bumps it too.
    """
    __tablename__ = 'memberships'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False)
    role = db.Column(db.String(20), default=UserRole.MEMBER.value, nullable=False)
    target_amount = db.Column(db.Float, nullable=False)
    saved_amount = db.Column(db.Float, default=0.0, nullable=False)
    status = db.Column(db.String(20), default=MembershipStatus.ACTIVE.value, nullable=False)
    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # History outlives the member: rows are detached, not deleted
    contributions = db.relationship('Contribution', backref='membership', lazy='dynamic')
    loans = db.relationship('Loan', backref='membership', lazy='dynamic')

    __table_args__ = (
        db.UniqueConstraint('user_id', 'group_id', name='unique_membership'),
    )
    __mapper_args__ = {'version_id_col': version}

    @property
    def remaining_target(self):
        return max(0.0, self.target_amount - self.saved_amount)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'groupId': self.group_id,
            'role': self.role,
            'targetAmount': self.target_amount,
            'savedAmount': self.saved_amount,
            'status': self.status,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }

    def __repr__(self):
        return f'<Membership user={self.user_id} group={self.group_id} saved={self.saved_amount}>'


# ============================================================
# CONTRIBUTION MODEL
# ============================================================

class Contribution(db.Model):
    """
    A deposit toward a membership's target.

    Lifecycle: pending -> confirmed | rejected. Only confirmation moves
    money into the membership ledger.
    """
    __tablename__ = 'contributions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False)
    membership_id = db.Column(db.Integer, db.ForeignKey('memberships.id', ondelete='SET NULL'), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    payment_method = db.Column(db.String(20), default=PaymentMethod.CARD.value, nullable=False)
    reference = db.Column(db.String(100), unique=True, nullable=False)
    status = db.Column(db.String(20), default=ContributionStatus.PENDING.value, nullable=False)
    confirmed_by = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    contributor = db.relationship('User', foreign_keys=[user_id])
    confirmer = db.relationship('User', foreign_keys=[confirmed_by])
    group = db.relationship('Group')

    def transition_to(self, new_status):
        check_transition('Contribution', CONTRIBUTION_TRANSITIONS, self.status, new_status)
        self.status = new_status

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'groupId': self.group_id,
            'membershipId': self.membership_id,
            'amount': self.amount,
            'paymentMethod': self.payment_method,
            'reference': self.reference,
            'status': self.status,
            'confirmedBy': self.confirmed_by,
            'confirmedAt': self.confirmed_at,
        }

    def __repr__(self):
        return f'<Contribution {self.reference} {self.amount} {self.status}>'


# ============================================================
# LOAN MODEL
# ============================================================

class Loan(db.Model):
    """
    An advance against savings. Issued instantly as 'active', settled
    once as 'repaid'. Overdue is derived from ``due_date`` at read time.
    """
    __tablename__ = 'loans'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), nullable=False)
    membership_id = db.Column(db.Integer, db.ForeignKey('memberships.id', ondelete='SET NULL'), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    interest_rate = db.Column(db.Float, nullable=False)
    interest = db.Column(db.Float, nullable=False)
    total_repayable = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(20), default=LoanStatus.ACTIVE.value, nullable=False)
    purpose = db.Column(db.Text, default='General')
    reference = db.Column(db.String(100), unique=True, nullable=False)
    due_date = db.Column(db.DateTime, nullable=False)
    repaid_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    borrower = db.relationship('User', foreign_keys=[user_id])
    group = db.relationship('Group')

    def display_status(self, now):
        return derive_loan_status(self.status, self.due_date, now)

    def is_overdue(self, now):
        return self.display_status(now) == LoanStatus.OVERDUE.value

    def transition_to(self, new_status):
        check_transition('Loan', LOAN_TRANSITIONS, self.status, new_status)
        self.status = new_status

    def to_dict(self, now=None):
        now = now or datetime.utcnow()
        repaid = self.status == LoanStatus.REPAID.value
        return {
            'id': self.id,
            'userId': self.user_id,
            'groupId': self.group_id,
            'membershipId': self.membership_id,
            'amount': self.amount,
            'interestRate': self.interest_rate,
            'interest': self.interest,
            'totalRepayable': self.total_repayable,
            'status': self.display_status(now),
            'purpose': self.purpose,
            'reference': self.reference,
            'borrowedDate': self.created_at,
            'dueDate': self.due_date,
            'repaidDate': self.repaid_date,
            'daysRemaining': None if repaid else days_between(now, self.due_date),
        }

    def __repr__(self):
        return f'<Loan {self.reference} {self.amount} {self.status}>'


# ============================================================
# NOTIFICATION MODEL (OUTBOX)
# ============================================================

class Notification(db.Model):
    """
    Append-only message for one recipient. Only ``read`` ever changes.
    """
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), default=NotificationType.SYSTEM.value, nullable=False)
    read = db.Column(db.Boolean, default=False, nullable=False)
    related_id = db.Column(db.Integer, nullable=True)
    related_model = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'message': self.message,
            'type': self.type,
            'read': self.read,
            'relatedId': self.related_id,
            'relatedModel': self.related_model,
            'createdAt': self.created_at,
        }

    def __repr__(self):
        return f'<Notification user={self.user_id} {self.type}>'
