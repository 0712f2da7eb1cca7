"""
PAYMENT SERVICE
===============

Callbacks from the external payment gateway. A successful charge confirms
the matching pending contribution exactly as an admin would, milestones
included. A failed charge declines it.
"""

import hmac
import logging
from flask import current_app
from stokvel.errors import AuthorizationError, ValidationError
from stokvel.models import Contribution
from stokvel.services import contribution_service

logger = logging.getLogger(__name__)

CHARGE_SUCCESS = 'charge.success'
CHARGE_FAILED = 'charge.failed'


def verify_gateway_secret(presented):
    expected = current_app.config.get('PAYMENT_GATEWAY_SECRET')
    if not expected or not presented or not hmac.compare_digest(str(presented), expected):
        raise AuthorizationError("Invalid payment gateway credentials")
    return True


def handle_gateway_event(event, reference):
    """
    Apply one gateway event to the contribution with ``reference``.

    Returns: the updated Contribution, or None for events we ignore
    """
    if not reference:
        raise ValidationError("Payment reference is required")

    if event == CHARGE_SUCCESS:
        return contribution_service.confirm_contribution_by_reference(reference)

    if event == CHARGE_FAILED:
        contribution = Contribution.query.filter_by(reference=reference).first()
        if not contribution:
            logger.warning("Failed charge for unknown reference %s", reference)
            return None
        return contribution_service.reject_contribution(
            contribution.id, admin_id=None, reason="Payment failed"
        )

    logger.info("Unhandled gateway event %s for %s", event, reference)
    return None
