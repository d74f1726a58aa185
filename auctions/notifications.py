"""
Notification outbox and delivery.

Engine operations call ``queue`` inside their transaction so a notification
exists only if the state change that caused it committed. Delivery happens
afterwards through the dispatcher named by ``AUCTIONS_NOTIFICATION_DISPATCHER``.
"""
import logging
from decimal import Decimal

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from django.utils.module_loading import import_string

from .conf import auction_settings
from .models import Notification
from .services.twilio_service import send_sms

logger = logging.getLogger(__name__)

EventType = Notification.EventType

TITLES = {
    EventType.OUTBID: "You've been outbid!",
    EventType.WON: "Congratulations! You won!",
    EventType.ENDED: "Auction ended",
    EventType.AUCTION_SOLD: "Your item sold!",
    EventType.PAYMENT_RECEIVED: "Payment received",
    EventType.OFFER_RECEIVED: "New offer received!",
    EventType.OFFER_ACCEPTED: "Your offer was accepted!",
    EventType.OFFER_REJECTED: "Offer declined",
    EventType.OFFER_COUNTERED: "Counter-offer received!",
    EventType.COUNTER_REJECTED: "Counter-offer declined",
    EventType.OFFER_EXPIRED: "Offer expired",
    EventType.LISTING_EXPIRING: "Listing expiring soon",
    EventType.LISTING_EXPIRED: "Listing has expired",
}

MESSAGES = {
    EventType.OUTBID: "Someone has placed a higher bid on an auction you're bidding on.",
    EventType.WON: "You've won an auction! Complete payment within 48 hours.",
    EventType.ENDED: "An auction you were watching has ended.",
    EventType.AUCTION_SOLD: "Your auction has ended with a winning bidder!",
    EventType.PAYMENT_RECEIVED: "Payment has been received for your sold item.",
    EventType.OFFER_RECEIVED: "Someone has made an offer on your listing. Review and respond.",
    EventType.OFFER_ACCEPTED: "Your offer was accepted! Complete payment within 48 hours.",
    EventType.OFFER_REJECTED: "Unfortunately, your offer was not accepted.",
    EventType.OFFER_COUNTERED: "The seller has made a counter-offer. Review and respond.",
    EventType.COUNTER_REJECTED: "The buyer declined your counter-offer.",
    EventType.OFFER_EXPIRED: "Your offer has expired without a response.",
    EventType.LISTING_EXPIRING: "Your listing will expire in 24 hours. Consider renewing.",
    EventType.LISTING_EXPIRED: "Your listing has expired. Relist to continue selling.",
}


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return value


def queue(user_id, event_type, listing=None, offer=None, **metadata):
    """Persist a notification for delivery once the current transaction commits."""
    return Notification.objects.create(
        user_id=user_id,
        event_type=event_type,
        listing=listing,
        offer=offer,
        title=TITLES[event_type],
        message=MESSAGES[event_type],
        metadata=_jsonable(metadata),
    )


class NullDispatcher:
    """Marks notifications delivered without sending anything."""

    def send(self, notification):
        pass


class EmailDispatcher:
    """Delivers notifications by email through Django's mail backend."""

    def send(self, notification):
        user = notification.user
        if not user.email:
            return

        listing = notification.listing
        lines = [notification.message]
        if listing is not None:
            lines.append(f'Listing: "{listing}"')
        for key in ('amount', 'amount_due', 'current_price', 'counter_amount'):
            if key in notification.metadata:
                lines.append(f"{key.replace('_', ' ').capitalize()}: ${notification.metadata[key]}")
        details = "\n".join(lines)

        message = f"""
Hello {user.username},

{details}

Thank you for using {settings.SITE_NAME}!
"""
        send_mail(
            subject=notification.title,
            message=message,
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[user.email],
            fail_silently=False,
        )


class SmsDispatcher:
    """Delivers notifications as text messages through Twilio."""

    def send(self, notification):
        user = notification.user
        if not user.phone_number:
            return
        send_sms(user.phone_number, f"{notification.title} {notification.message}")


def get_dispatcher():
    return import_string(auction_settings.NOTIFICATION_DISPATCHER)()


def _claim(notification, now):
    """Mark a notification as in flight. False if another worker already has it."""
    claimed = Notification.objects.filter(
        pk=notification.pk,
        dispatched_at__isnull=True,
    ).update(dispatched_at=now, attempts=F('attempts') + 1)
    return claimed == 1


def dispatch(notifications, dispatcher=None):
    """
    Deliver notifications, at most once each.

    Failures are logged and returned, and the row is released so a later
    ``dispatch_pending`` can retry it. They never propagate to the caller.
    """
    dispatcher = dispatcher or get_dispatcher()
    errors = []
    for notification in notifications:
        if not _claim(notification, timezone.now()):
            continue
        try:
            dispatcher.send(notification)
        except Exception as e:
            logger.error(
                f"Failed to dispatch {notification.event_type} notification "
                f"{notification.pk} to user {notification.user_id}: {e}"
            )
            Notification.objects.filter(pk=notification.pk).update(
                dispatched_at=None,
                last_error=str(e),
            )
            errors.append(f"notification {notification.pk}: {e}")
    return errors


def dispatch_on_commit(notifications):
    """Schedule delivery for after the surrounding transaction commits."""
    notifications = list(notifications)
    if notifications:
        transaction.on_commit(lambda: dispatch(notifications))


def dispatch_pending(limit=500):
    """Retry notifications that were never delivered."""
    pending = Notification.objects.filter(
        dispatched_at__isnull=True,
        attempts__lt=auction_settings.MAX_DISPATCH_ATTEMPTS,
    ).select_related('user', 'listing').order_by('created_at')[:limit]
    return dispatch(list(pending))


def mark_read(user_id, notification_ids=None):
    """Mark a user's notifications read; all of them when no ids are given."""
    notifications = Notification.objects.filter(user_id=user_id, is_read=False)
    if notification_ids is not None:
        notifications = notifications.filter(pk__in=notification_ids)
    return notifications.update(is_read=True)
