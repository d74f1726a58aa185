"""
Account suspension checks.

The lookup used by the engine is configurable through
``AUCTIONS_SUSPENSION_CHECK`` so moderation can live elsewhere.
"""
from django.utils.module_loading import import_string

from auctions.conf import auction_settings
from auctions.exceptions import AccountSuspended, NotFound
from auctions.models import User


def is_suspended(user_id):
    return User.objects.filter(pk=user_id, is_suspended=True).exists()


def ensure_not_suspended(user_id):
    """Raise unless ``user_id`` names an existing account in good standing."""
    if not User.objects.filter(pk=user_id).exists():
        raise NotFound('user', user_id)
    check = import_string(auction_settings.SUSPENSION_CHECK)
    if check(user_id):
        raise AccountSuspended(user_id)
