"""
AUTH ROUTES
===========

Registration (pending until approved), session login/logout and profile
maintenance.
"""

from flask import Blueprint, jsonify
from flask_login import login_user, logout_user, login_required, current_user
from stokvel.routes import get_payload, require_fields
from stokvel.services import membership_service, user_service

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


# ============== REGISTER ==============
@auth_bp.route('/register', methods=['POST'])
def register():
    payload = get_payload()
    user = user_service.register_user(
        full_name=payload.get('fullName'),
        email=payload.get('email'),
        phone=payload.get('phone'),
        password=payload.get('password'),
        preferred_group_ids=payload.get('groupIds') or [],
        message=payload.get('message', '')
    )
    return jsonify({
        'success': True,
        'message': 'Registration received. An admin will review your application.',
        'user': user.to_dict()
    }), 201


# ============== LOGIN / LOGOUT ==============
@auth_bp.route('/login', methods=['POST'])
def login():
    payload = get_payload()
    require_fields(payload, 'email', 'password')

    user = user_service.authenticate(payload['email'], payload['password'])
    login_user(user, remember=bool(payload.get('remember')))

    return jsonify({'success': True, 'user': user.to_dict()})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True, 'message': 'Logged out'})


@auth_bp.route('/me')
@login_required
def me():
    profile = current_user.to_dict()
    profile['memberships'] = [
        m.to_dict() for m in membership_service.list_memberships_for_user(current_user.id)
    ]
    return jsonify({'success': True, 'user': profile})


# ============== PROFILE ==============
@auth_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    payload = get_payload()
    user = user_service.update_profile(
        current_user.id,
        full_name=payload.get('fullName'),
        email=payload.get('email'),
        phone=payload.get('phone')
    )
    return jsonify({'success': True, 'message': 'Profile updated', 'user': user.to_dict()})


@auth_bp.route('/password', methods=['PUT'])
@login_required
def change_password():
    payload = get_payload()
    require_fields(payload, 'currentPassword', 'newPassword')
    user_service.change_password(current_user.id, payload['currentPassword'], payload['newPassword'])
    return jsonify({'success': True, 'message': 'Password changed'})
