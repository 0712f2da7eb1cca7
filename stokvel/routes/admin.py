"""
ADMIN ROUTES
============

Admin-specific actions:
- Dashboard overview
- Registration approval and user management
- Direct group assignment
- Contribution review queue
"""

from flask import Blueprint, jsonify, request
from stokvel.routes import admin_required, get_payload, require_fields
from stokvel.services import admin_service, contribution_service

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


# ============== ADMIN DASHBOARD ==============
@admin_bp.route('/overview')
@admin_required
def overview():
    return jsonify({'success': True, 'overview': admin_service.get_admin_overview()})


# ============== USERS ==============
@admin_bp.route('/users')
@admin_required
def list_users():
    users = admin_service.list_users(
        status=request.args.get('status'),
        search=request.args.get('search'),
        group_id=request.args.get('groupId', type=int)
    )
    return jsonify({'success': True, 'users': users})


@admin_bp.route('/users/<int:user_id>/approve', methods=['PUT'])
@admin_required
def approve_user(user_id):
    result = admin_service.approve_user(user_id, get_payload().get('groupIds'))
    created = result['membershipsCreated']
    return jsonify({
        'success': True,
        'message': f'User approved and added to {created} group(s)',
        'user': result['user'].to_dict(),
        'memberships': [m.to_dict() for m in result['memberships']],
        'membershipsCreated': created,
    })


@admin_bp.route('/users/<int:user_id>/status', methods=['PUT'])
@admin_required
def update_user_status(user_id):
    payload = get_payload()
    require_fields(payload, 'status')
    user = admin_service.update_user_status(user_id, payload['status'])
    return jsonify({'success': True, 'user': user.to_dict()})


@admin_bp.route('/users/<int:user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id):
    admin_service.delete_user(user_id)
    return jsonify({'success': True, 'message': 'User deleted'})


@admin_bp.route('/users/<int:user_id>/memberships', methods=['POST'])
@admin_required
def add_user_to_group(user_id):
    payload = get_payload()
    require_fields(payload, 'groupId')
    membership = admin_service.add_user_to_group(
        user_id, payload['groupId'], role=payload.get('role', 'member')
    )
    return jsonify({'success': True, 'membership': membership.to_dict()}), 201


# ============== CONTRIBUTIONS ==============
@admin_bp.route('/contributions')
@admin_required
def list_contributions():
    contributions = contribution_service.list_all_contributions(
        group_id=request.args.get('groupId', type=int),
        status=request.args.get('status')
    )
    return jsonify({'success': True, 'contributions': contributions})
