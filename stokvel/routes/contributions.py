"""
CONTRIBUTION ROUTES
===================

Members submit contributions; admins confirm or reject them.
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from stokvel.errors import ValidationError
from stokvel.routes import admin_required, get_payload, require_fields
from stokvel.services import contribution_service, membership_service
from stokvel.services.authorization_service import can_view_membership, require_authorization

contributions_bp = Blueprint('contributions', __name__, url_prefix='/api/contributions')


# ============== SUBMIT ==============
@contributions_bp.route('', methods=['POST'])
@login_required
def add_contribution():
    payload = get_payload()
    require_fields(payload, 'membershipId', 'amount')

    contribution = contribution_service.add_contribution(
        membership_id=payload['membershipId'],
        amount=payload['amount'],
        payment_method=payload.get('paymentMethod'),
        requester_id=current_user.id
    )
    return jsonify({
        'success': True,
        'message': 'Contribution submitted for confirmation',
        'contribution': contribution.to_dict()
    }), 201


# ============== GROUP HISTORY ==============
@contributions_bp.route('', methods=['GET'])
@login_required
def list_contributions():
    membership_id = request.args.get('membershipId', type=int)
    if not membership_id:
        raise ValidationError("membershipId is required")

    membership = membership_service.get_membership(membership_id)
    require_authorization(can_view_membership, current_user.id, membership)

    result = contribution_service.list_group_contributions(
        membership_id,
        status=request.args.get('status'),
        member_id=request.args.get('memberId', type=int)
    )
    return jsonify({'success': True, **result})


# ============== ADMIN REVIEW ==============
@contributions_bp.route('/<int:contribution_id>/confirm', methods=['PUT'])
@admin_required
def confirm_contribution(contribution_id):
    contribution = contribution_service.confirm_contribution(
        contribution_id, confirming_admin_id=current_user.id
    )
    return jsonify({
        'success': True,
        'message': 'Contribution confirmed',
        'contribution': contribution.to_dict()
    })


@contributions_bp.route('/<int:contribution_id>/reject', methods=['PUT'])
@admin_required
def reject_contribution(contribution_id):
    contribution = contribution_service.reject_contribution(
        contribution_id,
        admin_id=current_user.id,
        reason=get_payload().get('reason')
    )
    return jsonify({
        'success': True,
        'message': 'Contribution rejected',
        'contribution': contribution.to_dict()
    })
