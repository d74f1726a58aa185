"""
Completed sales: recording the buyer, checkout and payment confirmation.
"""
import logging
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from auctions import notifications
from auctions.conf import auction_settings
from auctions.exceptions import Forbidden, InvalidState
from auctions.models import Listing, Notification
from auctions.services.payments import get_payment_backend

from .locking import lock_listing, save_listing
from .reputation import get_watchers, positive_percentage

logger = logging.getLogger(__name__)

SALE_FIELDS = [
    'status',
    'winner',
    'winning_amount',
    'payment_status',
    'payment_deadline',
]


def record_sale(listing, buyer_id, amount, now):
    """
    Mark a locked listing as sold to ``buyer_id`` for ``amount``.

    Returns the names of the fields that changed; the caller writes them.
    """
    listing.status = Listing.Status.SOLD
    listing.winner_id = buyer_id
    listing.winning_amount = amount
    listing.payment_status = Listing.PaymentStatus.PENDING
    listing.payment_deadline = now + timedelta(hours=auction_settings.PAYMENT_WINDOW_HOURS)
    return list(SALE_FIELDS)


def sale_events(listing):
    """
    Queue the notifications for a finished sale.

    The buyer is told what they owe, the seller that the item sold and other
    watchers that the listing ended.
    """
    events = [
        notifications.queue(
            listing.winner_id,
            Notification.EventType.WON,
            listing=listing,
            amount=listing.winning_amount,
            amount_due=checkout_amount(listing),
            payment_deadline=listing.payment_deadline,
            seller_positive_percentage=positive_percentage(listing.seller),
        ),
        notifications.queue(
            listing.seller_id,
            Notification.EventType.AUCTION_SOLD,
            listing=listing,
            amount=listing.winning_amount,
        ),
    ]
    watcher_ids = get_watchers(listing.pk).exclude(
        pk__in=[listing.winner_id, listing.seller_id]
    ).values_list('pk', flat=True)
    for user_id in watcher_ids:
        events.append(notifications.queue(
            user_id,
            Notification.EventType.ENDED,
            listing=listing,
            final_price=listing.winning_amount,
        ))
    return events


def checkout_amount(listing):
    """Total the buyer owes: the winning amount plus shipping."""
    return listing.winning_amount + listing.shipping_cost


@transaction.atomic
def start_checkout(listing_id, buyer_id):
    """Ask the payment backend for an intent covering the buyer's total."""
    listing = lock_listing(listing_id)

    if listing.winner_id != buyer_id:
        raise Forbidden("Only the buyer can check out this listing.")
    if listing.status != Listing.Status.SOLD or listing.payment_status != Listing.PaymentStatus.PENDING:
        raise InvalidState("This listing is not awaiting payment.")

    amount = checkout_amount(listing)
    intent = get_payment_backend().create_payment_intent(listing, amount)

    listing.payment_reference = intent['reference']
    save_listing(listing, ['payment_reference'])
    return {'listing': listing, 'amount': amount, 'intent': intent}


@transaction.atomic
def mark_paid(listing_id, reference=None):
    """
    Payment callback. Moves a sold listing from pending to paid.

    Calling it again for a listing that is already paid is a no-op.
    """
    listing = lock_listing(listing_id)

    if listing.payment_status == Listing.PaymentStatus.PAID:
        return listing, []
    if listing.status != Listing.Status.SOLD or listing.payment_status != Listing.PaymentStatus.PENDING:
        raise InvalidState("This listing is not awaiting payment.")

    listing.payment_status = Listing.PaymentStatus.PAID
    listing.paid_at = timezone.now()
    fields = ['payment_status', 'paid_at']
    if reference:
        listing.payment_reference = reference
        fields.append('payment_reference')
    save_listing(listing, fields)

    events = [
        notifications.queue(
            listing.seller_id,
            Notification.EventType.PAYMENT_RECEIVED,
            listing=listing,
            amount=checkout_amount(listing),
        )
    ]
    logger.info(f"Listing {listing.pk} marked paid")
    notifications.dispatch_on_commit(events)
    return listing, events
