from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user
from stokvel.services import notification_service

notifications_bp = Blueprint('notifications', __name__, url_prefix='/api/notifications')


@notifications_bp.route('', methods=['GET'])
@login_required
def list_notifications():
    result = notification_service.list_notifications(
        current_user.id,
        limit=request.args.get('limit', type=int),
        unread_only=request.args.get('unreadOnly') in ('1', 'true')
    )
    return jsonify({'success': True, **result})


@notifications_bp.route('/<int:notification_id>/read', methods=['PUT'])
@login_required
def mark_as_read(notification_id):
    notification_service.mark_as_read(notification_id, current_user.id)
    return jsonify({'success': True})


@notifications_bp.route('/read-all', methods=['PUT'])
@login_required
def mark_all_as_read():
    count = notification_service.mark_all_as_read(current_user.id)
    return jsonify({'success': True, 'updated': count})
