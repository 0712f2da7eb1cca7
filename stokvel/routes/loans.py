"""
LOAN ROUTES
===========

Instant loans against savings. Uses loan_service for all operations.
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from stokvel.errors import ValidationError
from stokvel.routes import get_payload, require_fields
from stokvel.services import loan_service, membership_service
from stokvel.services.authorization_service import can_view_membership, require_authorization

loans_bp = Blueprint('loans', __name__, url_prefix='/api/loans')


def _membership_from_args():
    membership_id = request.args.get('membershipId', type=int)
    if not membership_id:
        raise ValidationError("membershipId is required")

    membership = membership_service.get_membership(membership_id)
    require_authorization(can_view_membership, current_user.id, membership)
    return membership


# ============== REQUEST LOAN ==============
@loans_bp.route('', methods=['POST'])
@login_required
def request_loan():
    payload = get_payload()
    require_fields(payload, 'membershipId', 'amount')

    loan = loan_service.request_loan(
        membership_id=payload['membershipId'],
        amount=payload['amount'],
        purpose=payload.get('purpose'),
        requester_id=current_user.id
    )
    return jsonify({
        'success': True,
        'message': f'Loan approved. Ref: {loan.reference}',
        'loan': loan.to_dict()
    }), 201


# ============== HISTORY / CAPACITY ==============
@loans_bp.route('', methods=['GET'])
@login_required
def list_loans():
    membership = _membership_from_args()
    result = loan_service.list_loans(membership.id, status=request.args.get('status'))
    return jsonify({'success': True, **result})


@loans_bp.route('/summary', methods=['GET'])
@login_required
def loan_summary():
    membership = _membership_from_args()
    return jsonify({'success': True, 'summary': loan_service.get_loan_summary(membership.id)})


# ============== REPAY ==============
@loans_bp.route('/<int:loan_id>/repay', methods=['PUT'])
@login_required
def repay_loan(loan_id):
    result = loan_service.repay_loan(loan_id, requester_id=current_user.id)
    loan = result['loan']

    if result['penalty_applied']:
        message = (f"Loan repaid with overdue penalty ({result['days_overdue']} days late). "
                   f"Total: R{result['final_total']:,.2f}")
    else:
        message = f"Loan repaid. Total: R{result['final_total']:,.2f}"

    return jsonify({
        'success': True,
        'message': message,
        'loan': loan.to_dict(),
        'penaltyApplied': result['penalty_applied'],
        'daysOverdue': result['days_overdue'],
        'originalInterest': result['original_interest'],
        'originalTotal': result['original_total'],
        'finalTotal': result['final_total'],
    })
