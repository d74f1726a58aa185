"""
Payment processor seam.

Capture and webhooks live with the processor; the engine only asks a backend
for a payment intent and is told about completed payments via ``mark_paid``.
"""
import logging
import uuid

from django.utils.module_loading import import_string

from auctions.conf import auction_settings

logger = logging.getLogger(__name__)


class ManualPaymentBackend:
    """Records a local reference and expects payment to be confirmed by staff."""

    def create_payment_intent(self, listing, amount):
        reference = f"manual_{uuid.uuid4().hex}"
        logger.info(f"Created manual payment intent {reference} for listing {listing.pk}: ${amount}")
        return {
            'reference': reference,
            'amount': str(amount),
            'currency': 'usd',
        }


def get_payment_backend():
    return import_string(auction_settings.PAYMENT_BACKEND)()
