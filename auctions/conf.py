"""
Engine tunables.

Each value can be overridden in Django settings with an ``AUCTIONS_`` prefix,
e.g. ``AUCTIONS_MAX_DURATION_DAYS = 10``. Values are read on every access so
``override_settings`` works in tests.
"""

from decimal import Decimal

from django.conf import settings


DEFAULTS = {
    'MIN_STARTING_PRICE': Decimal('0.99'),
    'MIN_FIXED_PRICE': Decimal('0.99'),
    'MAX_DETAIL_IMAGES': 4,
    'MIN_DURATION_DAYS': 1,
    'MAX_DURATION_DAYS': 14,
    'FIXED_PRICE_LISTING_DAYS': 30,
    'OFFER_EXPIRY_HOURS': 48,
    'PAYMENT_WINDOW_HOURS': 48,
    'ENDING_SOON_HOURS': 24,
    'MAX_DISPATCH_ATTEMPTS': 5,
    'NOTIFICATION_DISPATCHER': 'auctions.notifications.EmailDispatcher',
    'PAYMENT_BACKEND': 'auctions.services.payments.ManualPaymentBackend',
    'SUSPENSION_CHECK': 'auctions.services.suspension.is_suspended',
}


class AuctionSettings:
    """Lazy accessor for ``AUCTIONS_*`` settings."""

    def __getattr__(self, name):
        if name not in DEFAULTS:
            raise AttributeError(f"Unknown auction setting: {name}")
        return getattr(settings, f'AUCTIONS_{name}', DEFAULTS[name])


auction_settings = AuctionSettings()
