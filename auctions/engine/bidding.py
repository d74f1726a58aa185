"""
Proxy Bidding Engine.

Bidders declare a maximum and the engine bids on their behalf, one increment
at a time, up to that maximum. The visible price is the lowest amount that
keeps the leader ahead of the runner-up.

Key Concepts:
- The bid log is append-only; a bidder's latest bid is their live maximum
- ``current_price``, ``high_bidder`` and ``bid_count`` on the listing are a
  projection of the log written in the same transaction as each bid
- Equal maximums are won by whoever bid first
- A maximum at or above the Buy-It-Now price ends the auction immediately
  at that price, provided the auction was priced below it when the bid arrived
"""
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from auctions import notifications
from auctions.exceptions import BidTooLow, Forbidden, InvalidState, NotFound
from auctions.models import Bid, Listing, Notification
from auctions.services.suspension import ensure_not_suspended

from .listings import activate_if_due
from .locking import lock_listing, save_listing
from .pricing import bid_increment, validate_price
from .sales import record_sale, sale_events

logger = logging.getLogger(__name__)

PROJECTION_FIELDS = ['current_price', 'high_bidder', 'bid_count']


def _live_bids(listing):
    """Latest bid per bidder, keyed by bidder id."""
    live = {}
    for bid in Bid.objects.filter(listing=listing).order_by('sequence'):
        live[bid.bidder_id] = bid
    return live


def _ensure_biddable(listing, user_id, now):
    if not listing.is_auction:
        raise InvalidState("Only auctions accept bids.")
    if listing.status != Listing.Status.ACTIVE or listing.is_expired(now):
        raise InvalidState("This auction is not accepting bids.")
    if listing.seller_id == user_id:
        raise Forbidden("You cannot bid on your own listing.")


def _buy_it_now_reached(listing, max_bid, price_before):
    """A maximum at or above Buy-It-Now ends an auction not yet priced at it."""
    return (
        listing.buy_it_now_price is not None
        and price_before < listing.buy_it_now_price
        and max_bid >= listing.buy_it_now_price
    )


def _close_at_buy_it_now(listing, buyer_id, now):
    """End a locked auction at its Buy-It-Now price. Returns changed fields."""
    listing.high_bidder_id = buyer_id
    listing.current_price = listing.buy_it_now_price
    listing.end_time = now
    fields = record_sale(listing, buyer_id, listing.buy_it_now_price, now)
    return fields + ['high_bidder', 'current_price', 'end_time']


def _outcome(listing, bid, accepted, bidder_id, message, events):
    is_open = listing.status == Listing.Status.ACTIVE
    return {
        'listing': listing,
        'bid': bid,
        'accepted': accepted,
        'is_high_bidder': listing.high_bidder_id == bidder_id,
        'current_price': listing.current_price,
        'minimum_next_bid': listing.minimum_next_bid if is_open else None,
        'message': message,
        'events': events,
    }


@transaction.atomic
def place_bid(listing_id, bidder_id, max_bid, now=None):
    """
    Place a proxy bid with maximum ``max_bid``.

    Args:
        listing_id: Auction to bid on
        bidder_id: User placing the bid
        max_bid: Most the bidder is willing to pay, in whole units
        now: Override for the current time

    Returns:
        dict: listing, bid (None for a no-op), accepted, is_high_bidder,
        current_price, minimum_next_bid, message and the queued events

    Raises:
        ValidationError: If max_bid is not a positive whole-unit amount
        AccountSuspended: If the bidder is suspended
        Forbidden: If the bidder is the seller
        InvalidState: If the listing is not an active auction
        BidTooLow: If max_bid is below the minimum next bid
    """
    max_bid = validate_price(max_bid, 'max_bid')
    ensure_not_suspended(bidder_id)
    now = now or timezone.now()

    listing = lock_listing(listing_id)
    fields = activate_if_due(listing, now)
    _ensure_biddable(listing, bidder_id, now)

    live = _live_bids(listing)
    leader_bid = live.get(listing.high_bidder_id)
    events = []

    # Leader raising their own maximum
    if leader_bid is not None and leader_bid.bidder_id == bidder_id:
        if max_bid <= leader_bid.max_bid:
            return _outcome(
                listing, None, False, bidder_id,
                "You are already the high bidder.", events,
            )

        bid = Bid.objects.create(
            listing=listing,
            bidder_id=bidder_id,
            max_bid=max_bid,
            price_after=listing.current_price,
            bidder_number=leader_bid.bidder_number,
            sequence=listing.bid_count + 1,
            placed_at=now,
        )
        listing.bid_count += 1
        fields += PROJECTION_FIELDS
        message = "Your maximum bid has been raised."

        if _buy_it_now_reached(listing, max_bid, listing.current_price):
            fields += _close_at_buy_it_now(listing, bidder_id, now)
            save_listing(listing, fields)
            events.extend(sale_events(listing))
            message = "You bought this item with Buy-It-Now!"
        else:
            save_listing(listing, fields)

        logger.info(f"Bidder {bidder_id} raised max to ${max_bid} on listing {listing.pk}")
        notifications.dispatch_on_commit(events)
        return _outcome(listing, bid, True, bidder_id, message, events)

    minimum = listing.minimum_next_bid
    if max_bid < minimum:
        raise BidTooLow(minimum)

    previous_leader_id = listing.high_bidder_id
    price_before = listing.current_price
    if leader_bid is None:
        listing.high_bidder_id = bidder_id
        listing.current_price = listing.starting_price
    elif max_bid > leader_bid.max_bid:
        listing.high_bidder_id = bidder_id
        listing.current_price = min(
            max_bid,
            leader_bid.max_bid + bid_increment(leader_bid.max_bid),
        )
    else:
        listing.current_price = min(
            max_bid + bid_increment(max_bid),
            leader_bid.max_bid,
        )

    if bidder_id in live:
        bidder_number = live[bidder_id].bidder_number
    else:
        bidder_number = len(live) + 1

    sold = _buy_it_now_reached(listing, max_bid, price_before)
    if sold:
        fields += _close_at_buy_it_now(listing, bidder_id, now)

    bid = Bid.objects.create(
        listing=listing,
        bidder_id=bidder_id,
        max_bid=max_bid,
        price_after=listing.current_price,
        bidder_number=bidder_number,
        sequence=listing.bid_count + 1,
        placed_at=now,
    )
    listing.bid_count += 1
    save_listing(listing, fields + PROJECTION_FIELDS)

    if previous_leader_id and previous_leader_id != listing.high_bidder_id:
        events.append(notifications.queue(
            previous_leader_id,
            Notification.EventType.OUTBID,
            listing=listing,
            current_price=listing.current_price,
            minimum_next_bid=listing.minimum_next_bid if not sold else None,
        ))
    if sold:
        events.extend(sale_events(listing))

    if sold:
        message = "You bought this item with Buy-It-Now!"
    elif listing.high_bidder_id == bidder_id:
        message = "You are the high bidder!"
    else:
        message = "You have been outbid by another bidder's maximum."

    logger.info(
        f"Bid #{bid.sequence} on listing {listing.pk}: bidder {bidder_id} max ${max_bid}, "
        f"price now ${listing.current_price}"
    )
    notifications.dispatch_on_commit(events)
    return _outcome(listing, bid, True, bidder_id, message, events)


@transaction.atomic
def buy_it_now(listing_id, buyer_id, now=None):
    """End an auction by paying its Buy-It-Now price."""
    ensure_not_suspended(buyer_id)
    now = now or timezone.now()

    listing = lock_listing(listing_id)
    fields = activate_if_due(listing, now)
    _ensure_biddable(listing, buyer_id, now)
    if listing.buy_it_now_price is None or listing.current_price >= listing.buy_it_now_price:
        raise InvalidState("Buy-It-Now is not available for this listing.")

    previous_leader_id = listing.high_bidder_id
    fields += _close_at_buy_it_now(listing, buyer_id, now)
    save_listing(listing, fields)

    events = []
    if previous_leader_id and previous_leader_id != buyer_id:
        events.append(notifications.queue(
            previous_leader_id,
            Notification.EventType.OUTBID,
            listing=listing,
            current_price=listing.current_price,
        ))
    events.extend(sale_events(listing))

    logger.info(f"Listing {listing.pk} bought with Buy-It-Now by {buyer_id} for ${listing.buy_it_now_price}")
    notifications.dispatch_on_commit(events)
    return listing, events


def get_bid_history(listing_id, viewer_id=None, is_platform=False):
    """
    Bids on a listing in the order they were placed.

    Bidders appear as "Bidder N". The platform sees everyone, and a bidder
    sees their own name and maximums.
    """
    try:
        exists = Listing.objects.filter(pk=listing_id).exists()
    except (DjangoValidationError, ValueError):
        exists = False
    if not exists:
        raise NotFound('listing', listing_id)

    history = []
    bids = Bid.objects.filter(listing_id=listing_id).select_related('bidder').order_by('sequence')
    for bid in bids:
        own = viewer_id is not None and bid.bidder_id == viewer_id
        visible = is_platform or own
        history.append({
            'id': bid.pk,
            'sequence': bid.sequence,
            'bidder': bid.bidder.username if visible else f"Bidder {bid.bidder_number}",
            'bidder_number': bid.bidder_number,
            'is_own': own,
            'price_after': bid.price_after,
            'max_bid': bid.max_bid if visible else None,
            'placed_at': bid.placed_at,
        })
    return history


def get_user_bids(user_id):
    """The user's live bid on every listing they have bid on, newest first."""
    latest = {}
    bids = Bid.objects.filter(bidder_id=user_id).select_related('listing').order_by('sequence')
    for bid in bids:
        latest[bid.listing_id] = bid
    return sorted(latest.values(), key=lambda bid: bid.placed_at, reverse=True)
