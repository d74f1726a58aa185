"""
Offer Negotiation Workflow for fixed-price listings.

States:
- pending -> accepted | rejected | countered | expired (seller responds)
- countered -> accepted | rejected | expired (buyer responds)

Every open offer expires a fixed number of hours after its last state change.
Expiry is applied eagerly by the lifecycle sweep and lazily whenever an offer
is read or acted on.
"""
import logging
from datetime import timedelta

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from auctions import notifications
from auctions.conf import auction_settings
from auctions.exceptions import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    OneActiveOfferPerBuyer,
    ValidationError,
)
from auctions.models import Listing, Notification, Offer
from auctions.services.suspension import ensure_not_suspended

from .locking import lock_listing, save_listing
from .pricing import validate_price
from .sales import checkout_amount, record_sale

logger = logging.getLogger(__name__)


def expire_due_offers(offers, now):
    """
    Move open offers past their expiry to ``expired``.

    Each offer is expired with a conditional update so concurrent sweeps
    never notify a buyer twice. Returns the queued notifications.
    """
    events = []
    due = offers.filter(status__in=Offer.OPEN_STATUSES, expires_at__lte=now)
    for offer in due.select_related('listing'):
        expired = Offer.objects.filter(
            pk=offer.pk,
            status__in=Offer.OPEN_STATUSES,
            expires_at__lte=now,
        ).update(
            status=Offer.Status.EXPIRED,
            version=F('version') + 1,
            updated_at=now,
        )
        if expired:
            events.append(notifications.queue(
                offer.buyer_id,
                Notification.EventType.OFFER_EXPIRED,
                listing=offer.listing,
                offer=offer,
                amount=offer.amount,
            ))
    return events


def expire_lazily(offers, now=None):
    """Expire due offers in their own transaction before acting on them."""
    now = now or timezone.now()
    with transaction.atomic():
        events = expire_due_offers(offers, now)
        notifications.dispatch_on_commit(events)
    return events


def reject_open_offers(listing, now, exclude=None):
    """Reject every open offer on a listing that is leaving the market."""
    events = []
    open_offers = Offer.objects.filter(listing=listing, status__in=Offer.OPEN_STATUSES)
    if exclude is not None:
        open_offers = open_offers.exclude(pk=exclude.pk)
    for offer in open_offers:
        rejected = Offer.objects.filter(
            pk=offer.pk,
            status__in=Offer.OPEN_STATUSES,
        ).update(
            status=Offer.Status.REJECTED,
            responded_at=now,
            version=F('version') + 1,
            updated_at=now,
        )
        if rejected:
            events.append(notifications.queue(
                offer.buyer_id,
                Notification.EventType.OFFER_REJECTED,
                listing=listing,
                offer=offer,
                amount=offer.amount,
            ))
    return events


def _get_listing(listing_id):
    try:
        return Listing.objects.get(pk=listing_id)
    except (Listing.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('listing', listing_id)


def _get_offer(offer_id):
    try:
        return Offer.objects.get(pk=offer_id)
    except (Offer.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('offer', offer_id)


def _lock_offer(offer_id):
    try:
        return Offer.objects.select_for_update().get(pk=offer_id)
    except (Offer.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('offer', offer_id)


def _save_offer(offer, fields, now):
    values = {name: getattr(offer, name) for name in fields}
    updated = Offer.objects.filter(pk=offer.pk, version=offer.version).update(
        version=F('version') + 1,
        updated_at=now,
        **values,
    )
    if updated != 1:
        raise Conflict(f"Offer {offer.pk} was modified by another request. Please retry.")
    offer.version += 1
    offer.updated_at = now


def _ensure_open_listing(listing, now):
    if listing.status != Listing.Status.ACTIVE or listing.is_expired(now):
        raise InvalidState("This listing is no longer available.")


def _ensure_open_offer(offer, status):
    if offer.status == Offer.Status.EXPIRED:
        raise InvalidState("This offer has expired.")
    if offer.status != status:
        raise InvalidState(f"This offer is {offer.status} and cannot be answered.")


def _accept(listing, offer, amount, now):
    """Sell the listing at ``amount`` and close out the other negotiations."""
    offer.status = Offer.Status.ACCEPTED
    offer.accepted_amount = amount
    offer.responded_at = now
    _save_offer(offer, ['status', 'accepted_amount', 'responded_at'], now)

    fields = record_sale(listing, offer.buyer_id, amount, now)
    save_listing(listing, fields)

    events = reject_open_offers(listing, now, exclude=offer)
    logger.info(f"Offer {offer.pk} accepted: listing {listing.pk} sold for ${amount}")
    return events


def create_offer(buyer_id, listing_id, amount):
    """
    Make an offer below the asking price of a fixed-price listing.

    Raises:
        ValidationError: If the amount is out of range
        AccountSuspended: If the buyer is suspended
        Forbidden: If the buyer is the seller
        InvalidState: If the listing does not take offers
        OneActiveOfferPerBuyer: If the buyer already has an open offer
    """
    amount = validate_price(amount, 'amount')
    ensure_not_suspended(buyer_id)
    now = timezone.now()

    listing = _get_listing(listing_id)
    expire_lazily(Offer.objects.filter(listing=listing, buyer_id=buyer_id), now)

    with transaction.atomic():
        listing = lock_listing(listing.pk)
        if listing.is_auction or not listing.accepts_offers:
            raise InvalidState("This listing does not accept offers.")
        _ensure_open_listing(listing, now)
        if listing.seller_id == buyer_id:
            raise Forbidden("You cannot make an offer on your own listing.")

        if listing.min_offer_amount is not None and amount < listing.min_offer_amount:
            raise ValidationError('amount', f"Offers must be at least ${listing.min_offer_amount:.2f}.")
        if amount >= listing.price:
            raise ValidationError('amount', "Offers must be below the asking price. Buy it now instead.")

        existing = Offer.objects.filter(
            listing=listing,
            buyer_id=buyer_id,
            status__in=Offer.OPEN_STATUSES,
        ).first()
        if existing is not None:
            raise OneActiveOfferPerBuyer(existing)

        try:
            with transaction.atomic():
                offer = Offer.objects.create(
                    listing=listing,
                    buyer_id=buyer_id,
                    amount=amount,
                    expires_at=now + timedelta(hours=auction_settings.OFFER_EXPIRY_HOURS),
                )
        except IntegrityError:
            existing = Offer.objects.filter(
                listing=listing,
                buyer_id=buyer_id,
                status__in=Offer.OPEN_STATUSES,
            ).first()
            raise OneActiveOfferPerBuyer(existing)

        events = [notifications.queue(
            listing.seller_id,
            Notification.EventType.OFFER_RECEIVED,
            listing=listing,
            offer=offer,
            amount=amount,
        )]
        logger.info(f"Buyer {buyer_id} offered ${amount} on listing {listing.pk}")
        notifications.dispatch_on_commit(events)
    return offer, events


def respond_to_offer(seller_id, offer_id, action, counter_amount=None):
    """Seller accepts, rejects or counters a pending offer."""
    if action not in Offer.Action.values:
        raise ValidationError('action', "action must be one of: accept, reject, counter.")
    now = timezone.now()

    offer = _get_offer(offer_id)
    expire_lazily(Offer.objects.filter(pk=offer.pk), now)

    with transaction.atomic():
        listing = lock_listing(offer.listing_id)
        offer = _lock_offer(offer.pk)
        if listing.seller_id != seller_id:
            raise Forbidden("Only the seller can respond to this offer.")
        _ensure_open_offer(offer, Offer.Status.PENDING)
        _ensure_open_listing(listing, now)

        if action == Offer.Action.ACCEPT:
            events = _accept(listing, offer, offer.amount, now)
            events.append(notifications.queue(
                offer.buyer_id,
                Notification.EventType.OFFER_ACCEPTED,
                listing=listing,
                offer=offer,
                amount=offer.amount,
                amount_due=checkout_amount(listing),
                payment_deadline=listing.payment_deadline,
            ))

        elif action == Offer.Action.REJECT:
            offer.status = Offer.Status.REJECTED
            offer.responded_at = now
            _save_offer(offer, ['status', 'responded_at'], now)
            events = [notifications.queue(
                offer.buyer_id,
                Notification.EventType.OFFER_REJECTED,
                listing=listing,
                offer=offer,
                amount=offer.amount,
            )]

        else:
            if counter_amount is None:
                raise ValidationError('counter_amount', "counter_amount is required to counter an offer.")
            counter_amount = validate_price(counter_amount, 'counter_amount')
            if counter_amount <= offer.amount:
                raise ValidationError('counter_amount', "A counter-offer must be above the buyer's offer.")
            if counter_amount >= listing.price:
                raise ValidationError('counter_amount', "A counter-offer must be below the asking price.")

            offer.status = Offer.Status.COUNTERED
            offer.counter_amount = counter_amount
            offer.responded_at = now
            offer.expires_at = now + timedelta(hours=auction_settings.OFFER_EXPIRY_HOURS)
            _save_offer(offer, ['status', 'counter_amount', 'responded_at', 'expires_at'], now)
            events = [notifications.queue(
                offer.buyer_id,
                Notification.EventType.OFFER_COUNTERED,
                listing=listing,
                offer=offer,
                amount=offer.amount,
                counter_amount=counter_amount,
            )]

        logger.info(f"Seller {seller_id} chose {action} on offer {offer.pk}")
        notifications.dispatch_on_commit(events)
    return offer, events


def respond_to_counter_offer(buyer_id, offer_id, action):
    """Buyer accepts or rejects the seller's counter-offer."""
    if action not in (Offer.Action.ACCEPT, Offer.Action.REJECT):
        raise ValidationError('action', "action must be one of: accept, reject.")
    now = timezone.now()

    offer = _get_offer(offer_id)
    expire_lazily(Offer.objects.filter(pk=offer.pk), now)

    with transaction.atomic():
        listing = lock_listing(offer.listing_id)
        offer = _lock_offer(offer.pk)
        if offer.buyer_id != buyer_id:
            raise Forbidden("Only the buyer can respond to this counter-offer.")
        _ensure_open_offer(offer, Offer.Status.COUNTERED)

        if action == Offer.Action.ACCEPT:
            _ensure_open_listing(listing, now)
            events = _accept(listing, offer, offer.counter_amount, now)
            events.append(notifications.queue(
                listing.seller_id,
                Notification.EventType.AUCTION_SOLD,
                listing=listing,
                offer=offer,
                amount=offer.counter_amount,
            ))
        else:
            offer.status = Offer.Status.REJECTED
            offer.responded_at = now
            _save_offer(offer, ['status', 'responded_at'], now)
            events = [notifications.queue(
                listing.seller_id,
                Notification.EventType.COUNTER_REJECTED,
                listing=listing,
                offer=offer,
                amount=offer.amount,
                counter_amount=offer.counter_amount,
            )]

        logger.info(f"Buyer {buyer_id} chose {action} on counter-offer {offer.pk}")
        notifications.dispatch_on_commit(events)
    return offer, events


def get_offers_for_listing(listing_id, seller_id):
    """All offers on a listing, newest first. Seller only."""
    listing = _get_listing(listing_id)
    if listing.seller_id != seller_id:
        raise Forbidden("Only the seller can view offers on this listing.")

    expire_lazily(Offer.objects.filter(listing=listing), timezone.now())
    return list(
        Offer.objects.filter(listing=listing).select_related('buyer').order_by('-created_at')
    )


def get_buyer_offers(buyer_id):
    expire_lazily(Offer.objects.filter(buyer_id=buyer_id), timezone.now())
    return list(
        Offer.objects.filter(buyer_id=buyer_id).select_related('listing').order_by('-created_at')
    )
