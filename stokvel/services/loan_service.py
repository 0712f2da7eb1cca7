"""
LOAN SERVICE
============

Handles:
- Borrowing limits (a percentage of confirmed savings)
- Instant loan issue with standard interest
- Repayment, with the flat overdue penalty when settled late
- Loan listings with derived overdue status

PENALTY POLICY:
A loan repaid after its due date is settled at the group's overdue rate
applied once to the principal. It is not prorated by days late; the
number of days late is only reported.

CONCURRENCY:
Issuing a loan reads the outstanding principal and inserts the loan in one
transaction that also bumps the membership's version. A concurrent loan or
savings increment on the same membership makes the flush fail with
StaleDataError, and the request is retried from a fresh read.
"""

import logging
import math
import uuid
from datetime import datetime, timedelta
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError
from stokvel.extensions import db
from stokvel.errors import (
    StokvelError, ValidationError, NotFoundError, ConflictError, LedgerError
)
from stokvel.models import (
    Loan, LoanStatus, MembershipStatus, NotificationType, RelatedModel,
    OUTSTANDING_LOAN_STATUSES, LOAN_TRANSITIONS, check_transition, days_between
)
from stokvel.services import membership_service, notification_service
from stokvel.services.authorization_service import (
    can_borrow, can_repay, require_authorization
)

logger = logging.getLogger(__name__)


# ============================================================
# CALCULATIONS (PURE)
# ============================================================

def round_money(value):
    return round(value, 2)


def calculate_max_borrowable(saved_amount, loan_percentage_limit):
    """Whole-rand borrowing ceiling: floor(saved * limit / 100)."""
    return math.floor(saved_amount * loan_percentage_limit / 100)


def calculate_loan_interest(amount, rate):
    interest = amount * rate / 100
    return {
        'principal': amount,
        'interest_rate': rate,
        'interest': round_money(interest),
        'total_repayable': round_money(amount + interest)
    }


def calculate_overdue_settlement(principal, overdue_rate):
    """Flat penalty: the overdue rate replaces the standard rate once."""
    return calculate_loan_interest(principal, overdue_rate)


def get_loan_due_date(now, repayment_days):
    return now + timedelta(days=repayment_days)


def calculate_days_overdue(due_date, now):
    return max(0, days_between(due_date, now))


def validate_loan_request(amount, remaining, min_loan):
    """Return every violated borrowing rule (empty list when the request is fine)."""
    errors = []

    if not isinstance(amount, (int, float)) or isinstance(amount, bool) \
            or not math.isfinite(amount):
        return ["Loan amount must be a number"]

    if amount <= 0:
        errors.append("Loan amount must be greater than 0")
    elif amount < min_loan:
        errors.append(f"Minimum loan amount is R{min_loan}")

    if remaining <= 0:
        errors.append("You have no borrowing capacity remaining")
    elif amount > remaining:
        errors.append(f"Amount exceeds your borrowing limit. Remaining: R{remaining:,.2f}")

    return errors


def generate_loan_reference():
    return f"LOAN-{uuid.uuid4().hex[:12].upper()}"


# ============================================================
# LOOKUPS
# ============================================================

def get_loan(loan_id):
    loan = db.session.get(Loan, loan_id)
    if not loan:
        raise NotFoundError(f"Loan {loan_id} not found")
    return loan


def count_outstanding_loans_for_user(user_id):
    return Loan.query.filter(
        Loan.user_id == user_id,
        Loan.status.in_(OUTSTANDING_LOAN_STATUSES)
    ).count()


# ============================================================
# REQUEST LOAN (INSTANT APPROVAL)
# ============================================================

def _issue_loan(membership_id, amount, purpose, requester_id, now):
    """One attempt: validate against a fresh read and stage the loan."""
    membership = membership_service.get_membership(membership_id)
    require_authorization(can_borrow, requester_id, membership)

    if membership.status != MembershipStatus.ACTIVE.value:
        raise ValidationError(f"Membership is {membership.status}")

    group = membership.group

    # Block new borrowing while any loan is past due
    overdue_loans = [
        loan for loan in membership.loans.filter(Loan.status.in_(OUTSTANDING_LOAN_STATUSES))
        if loan.is_overdue(now)
    ]
    if overdue_loans:
        raise ValidationError(
            f"You have {len(overdue_loans)} overdue loan(s). "
            f"Please repay before requesting new loans."
        )

    max_borrowable = calculate_max_borrowable(membership.saved_amount, group.loan_percentage_limit)
    outstanding = membership_service.find_outstanding_loan_principal_sum(membership.id)
    remaining = round_money(max_borrowable - outstanding)

    errors = validate_loan_request(amount, remaining, current_app.config['MIN_LOAN_AMOUNT'])
    if errors:
        raise ValidationError(errors)

    terms = calculate_loan_interest(float(amount), group.interest_rate)
    due_date = get_loan_due_date(now, group.loan_repayment_days)

    loan = Loan(
        user_id=membership.user_id,
        group_id=group.id,
        membership_id=membership.id,
        amount=terms['principal'],
        interest_rate=terms['interest_rate'],
        interest=terms['interest'],
        total_repayable=terms['total_repayable'],
        status=LoanStatus.ACTIVE.value,
        purpose=purpose or 'General',
        reference=generate_loan_reference(),
        due_date=due_date,
        created_at=now
    )
    db.session.add(loan)

    # Touch the membership so the flush checks and bumps its version
    membership.updated_at = now
    flag_modified(membership, 'updated_at')
    db.session.flush()

    borrower = membership.user
    notification_service.notify(
        requester_id,
        f"Loan of R{loan.amount:,.2f} approved from {group.name}! "
        f"Total repayable: R{loan.total_repayable:,.2f} by {due_date:%Y-%m-%d}. "
        f"Ref: {loan.reference}",
        NotificationType.LOAN.value,
        related_id=loan.id,
        related_model=RelatedModel.LOAN.value
    )
    notification_service.notify_admins(
        f"New loan of R{loan.amount:,.2f} from {borrower.full_name} on {group.name} "
        f"(Due: {due_date:%Y-%m-%d})",
        NotificationType.LOAN.value,
        related_id=loan.id,
        related_model=RelatedModel.LOAN.value
    )

    return loan


def request_loan(membership_id, amount, purpose, requester_id, now=None):
    """
    Issue a loan against the membership's savings.

    Rules:
    - maxBorrowable = floor(saved * loanPercentageLimit / 100)
    - remaining = maxBorrowable - outstanding principal (active + overdue)
    - amount must be >= MIN_LOAN_AMOUNT and <= remaining

    Returns: Loan (ACTIVE)
    """
    now = now or datetime.utcnow()
    max_attempts = current_app.config['LOAN_REQUEST_MAX_RETRIES']

    for attempt in range(1, max_attempts + 1):
        try:
            loan = _issue_loan(membership_id, amount, purpose, requester_id, now)
            db.session.commit()

            logger.info("Loan %s issued: membership=%s amount=%s total=%s",
                        loan.reference, membership_id, loan.amount, loan.total_repayable)
            return loan

        except StaleDataError:
            db.session.rollback()
            logger.warning("Membership %s changed during loan request (attempt %s/%s)",
                           membership_id, attempt, max_attempts)
        except StokvelError as e:
            db.session.rollback()
            logger.warning("Loan refused for membership %s: %s", membership_id, e)
            raise
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Loan request failed for membership %s", membership_id)
            raise LedgerError("Failed to process loan request")

    raise ConflictError("Your savings changed while the loan was processed. Please try again.")


# ============================================================
# REPAY LOAN
# ============================================================

def repay_loan(loan_id, requester_id, now=None):
    """
    Settle a loan in full.

    If ``now`` is past the due date the overdue rate replaces the standard
    rate (flat, not prorated) and admins are told about the penalty.

    Returns: dict with the settled loan and penalty details
    """
    now = now or datetime.utcnow()

    try:
        loan = get_loan(loan_id)
        require_authorization(can_repay, requester_id, loan)
        check_transition('Loan', LOAN_TRANSITIONS, loan.status, LoanStatus.REPAID.value)

        group = loan.group
        original_interest = loan.interest
        original_total = loan.total_repayable
        penalty_applied = loan.is_overdue(now)
        days_overdue = calculate_days_overdue(loan.due_date, now)

        values = {
            Loan.status: LoanStatus.REPAID.value,
            Loan.repaid_date: now,
            Loan.updated_at: now
        }
        if penalty_applied:
            settlement = calculate_overdue_settlement(loan.amount, group.overdue_interest_rate)
            values[Loan.interest_rate] = settlement['interest_rate']
            values[Loan.interest] = settlement['interest']
            values[Loan.total_repayable] = settlement['total_repayable']

        # Only one repayment can move the loan out of an outstanding state
        settled = Loan.query.filter(
            Loan.id == loan.id,
            Loan.status.in_(OUTSTANDING_LOAN_STATUSES)
        ).update(values, synchronize_session=False)
        if not settled:
            raise ConflictError("Loan already repaid")

        loan = db.session.get(Loan, loan.id, populate_existing=True)

        if penalty_applied:
            message = (
                f"Overdue loan of R{loan.amount:,.2f} repaid. Penalty interest of "
                f"R{loan.interest:,.2f} applied ({days_overdue} days late). "
                f"Total repaid: R{loan.total_repayable:,.2f}"
            )
        else:
            message = (
                f"Loan of R{loan.amount:,.2f} repaid successfully. "
                f"Total repaid: R{loan.total_repayable:,.2f}"
            )
        notification_service.notify(
            requester_id, message, NotificationType.LOAN.value,
            related_id=loan.id, related_model=RelatedModel.LOAN.value
        )

        if penalty_applied:
            notification_service.notify_admins(
                f"Overdue loan repaid: {loan.borrower.full_name} repaid R{loan.amount:,.2f} "
                f"with penalty ({days_overdue} days late). Penalty: R{loan.interest:,.2f}",
                NotificationType.LOAN.value,
                related_id=loan.id,
                related_model=RelatedModel.LOAN.value
            )

        db.session.commit()

        logger.info("Loan %s repaid: total=%s penalty=%s",
                    loan.reference, loan.total_repayable, penalty_applied)

        return {
            'loan': loan,
            'penalty_applied': penalty_applied,
            'days_overdue': days_overdue,
            'original_interest': original_interest,
            'original_total': original_total,
            'final_total': loan.total_repayable
        }

    except StokvelError as e:
        db.session.rollback()
        logger.warning("Repayment of loan %s refused: %s", loan_id, e)
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Repayment of loan %s failed", loan_id)
        raise LedgerError("Failed to repay loan")


# ============================================================
# LISTINGS
# ============================================================

def list_loans(membership_id, status=None, now=None):
    """
    Loan history for a membership, newest first.

    Active loans past due are presented as 'overdue'; nothing is written.
    """
    now = now or datetime.utcnow()
    membership = membership_service.get_membership(membership_id)

    loans = membership.loans.order_by(Loan.created_at.desc(), Loan.id.desc()).all()
    rows = [loan.to_dict(now) for loan in loans]
    if status:
        rows = [row for row in rows if row['status'] == status]

    def total(field, wanted):
        return sum(row[field] for row in rows if row['status'] == wanted)

    stats = {
        'totalInterestPaid': total('interest', LoanStatus.REPAID.value),
        'activeLoans': sum(1 for row in rows if row['status'] == LoanStatus.ACTIVE.value),
        'overdueLoans': sum(1 for row in rows if row['status'] == LoanStatus.OVERDUE.value),
        'totalBorrowed': sum(row['amount'] for row in rows),
        'totalRepaid': total('totalRepayable', LoanStatus.REPAID.value),
        'activeLoanTotal': total('totalRepayable', LoanStatus.ACTIVE.value),
    }

    return {'loans': rows, 'stats': stats}


def get_loan_summary(membership_id):
    """Borrowing capacity for a membership."""
    membership = membership_service.get_membership(membership_id)
    group = membership.group

    max_loan_amount = calculate_max_borrowable(membership.saved_amount, group.loan_percentage_limit)
    total_borrowed = membership_service.find_outstanding_loan_principal_sum(membership.id)

    return {
        'savedAmount': membership.saved_amount,
        'maxLoanAmount': max_loan_amount,
        'totalBorrowed': total_borrowed,
        'remainingToBorrow': max(0, round_money(max_loan_amount - total_borrowed)),
        'interestRate': group.interest_rate,
        'overdueInterestRate': group.overdue_interest_rate,
        'repaymentDays': group.loan_repayment_days,
        'groupName': group.name,
    }


def loan_portfolio_counts(now=None):
    """Counts of outstanding loans, and how many of them are overdue right now."""
    now = now or datetime.utcnow()
    outstanding = Loan.query.filter(Loan.status.in_(OUTSTANDING_LOAN_STATUSES)).all()
    return {
        'active': len(outstanding),
        'overdue': sum(1 for loan in outstanding if loan.is_overdue(now)),
    }
