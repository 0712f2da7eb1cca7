"""
PAYMENT ROUTES
==============

Server-to-server callback from the payment gateway. Authenticated with the
shared secret header, not a user session.
"""

from flask import Blueprint, jsonify, request
from stokvel.routes import get_payload
from stokvel.services import payment_service

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments')

SECRET_HEADER = 'X-Gateway-Secret'


@payments_bp.route('/callback', methods=['POST'])
def gateway_callback():
    payment_service.verify_gateway_secret(request.headers.get(SECRET_HEADER))

    payload = get_payload()
    event = payload.get('event')
    contribution = payment_service.handle_gateway_event(event, payload.get('reference'))

    if contribution is None:
        return jsonify({'success': True, 'message': f'Event {event} ignored'})

    return jsonify({'success': True, 'contribution': contribution.to_dict()})
