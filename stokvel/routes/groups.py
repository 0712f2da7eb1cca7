"""
GROUP ROUTES
============

Listing is open to signed-in members; creating, editing and deleting is
admin only.
"""

from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from stokvel.routes import admin_required, get_payload, require_fields
from stokvel.services import group_service

groups_bp = Blueprint('groups', __name__, url_prefix='/api/groups')

# JSON field -> model column
FIELD_NAMES = {
    'name': 'name',
    'type': 'group_type',
    'description': 'description',
    'targetAmount': 'target_amount',
    'maxMembers': 'max_members',
    'interestRate': 'interest_rate',
    'overdueInterestRate': 'overdue_interest_rate',
    'loanPercentageLimit': 'loan_percentage_limit',
    'loanRepaymentDays': 'loan_repayment_days',
    'cycle': 'cycle',
    'meetingDay': 'meeting_day',
    'status': 'status',
}


def _to_columns(payload):
    return {FIELD_NAMES.get(key, key): value for key, value in payload.items()}


@groups_bp.route('', methods=['GET'])
@login_required
def list_groups():
    groups = [g.to_dict() for g in group_service.list_groups()]
    return jsonify({'success': True, 'groups': groups})


@groups_bp.route('', methods=['POST'])
@admin_required
def create_group():
    payload = get_payload()
    require_fields(payload, 'name', 'targetAmount', 'maxMembers')

    fields = _to_columns(payload)
    group = group_service.create_group(
        name=fields.pop('name'),
        target_amount=fields.pop('target_amount'),
        max_members=fields.pop('max_members'),
        created_by=current_user.id,
        **fields
    )
    return jsonify({'success': True, 'group': group.to_dict()}), 201


@groups_bp.route('/<int:group_id>', methods=['GET'])
@login_required
def view_group(group_id):
    return jsonify({'success': True, 'group': group_service.get_group_summary(group_id)})


@groups_bp.route('/<int:group_id>', methods=['PUT'])
@admin_required
def update_group(group_id):
    group = group_service.update_group(group_id, _to_columns(get_payload()))
    return jsonify({'success': True, 'group': group.to_dict()})


@groups_bp.route('/<int:group_id>', methods=['DELETE'])
@admin_required
def delete_group(group_id):
    group_service.delete_group(group_id)
    return jsonify({'success': True, 'message': 'Group deleted'})
