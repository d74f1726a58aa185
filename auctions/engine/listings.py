"""
Listing Store.

Creates, edits, cancels and looks up auction and fixed-price listings.
"""
import logging
from datetime import timedelta

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Exists, OuterRef
from django.utils import timezone

from auctions import notifications
from auctions.conf import auction_settings
from auctions.exceptions import Conflict, Forbidden, InvalidState, NotFound, ValidationError
from auctions.models import Bid, Listing, User, Watchlist
from auctions.services.suspension import ensure_not_suspended

from .locking import lock_listing, save_listing
from .offers import reject_open_offers
from .pricing import to_amount, validate_price
from .sales import record_sale, sale_events

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('description', 'detail_images', 'buy_it_now_price')

SORTS = {
    'ending_soonest': ['end_time'],
    'ending_latest': ['-end_time'],
    'newest': ['-created_at'],
    'price_low': ['current_price', 'end_time'],
    'price_high': ['-current_price', 'end_time'],
    'most_bids': ['-bid_count', 'end_time'],
}


def _validate_images(images):
    if images is None:
        return []
    if not isinstance(images, (list, tuple)) or not all(isinstance(url, str) for url in images):
        raise ValidationError('detail_images', "detail_images must be a list of URLs.")
    if len(images) > auction_settings.MAX_DETAIL_IMAGES:
        raise ValidationError(
            'detail_images',
            f"A listing can have at most {auction_settings.MAX_DETAIL_IMAGES} detail images."
        )
    return list(images)


def _validate_shipping(value):
    if value is None:
        return to_amount(0, 'shipping_cost')
    amount = to_amount(value, 'shipping_cost')
    if amount < 0:
        raise ValidationError('shipping_cost', "shipping_cost cannot be negative.")
    return amount


def _validate_duration(value):
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError('duration_days', "duration_days must be a whole number of days.")
    low, high = auction_settings.MIN_DURATION_DAYS, auction_settings.MAX_DURATION_DAYS
    if not low <= value <= high:
        raise ValidationError('duration_days', f"duration_days must be between {low} and {high}.")
    return value


def _validate_buy_it_now(value, starting_price):
    amount = validate_price(value, 'buy_it_now_price')
    if amount <= starting_price:
        raise ValidationError('buy_it_now_price', "buy_it_now_price must be greater than the starting price.")
    return amount


def _ensure_item_available(item_id):
    """Lock any open listing for the item and refuse a second one."""
    open_listings = Listing.objects.select_for_update().filter(
        item_id=item_id,
        status__in=Listing.OPEN_STATUSES,
    )
    if open_listings.exists():
        raise Conflict(f"Item {item_id} already has an active or scheduled listing.")


def _insert(listing):
    try:
        with transaction.atomic():
            listing.save()
    except IntegrityError:
        raise Conflict(f"Item {listing.item_id} already has an active or scheduled listing.")
    return listing


def _mark_seller(seller_id, now):
    User.objects.filter(pk=seller_id, seller_since__isnull=True).update(seller_since=now)


def _item_id(params):
    item_id = params.get('item_id')
    if not item_id or not isinstance(item_id, str):
        raise ValidationError('item_id', "item_id is required.")
    return item_id


@transaction.atomic
def create_auction(seller_id, params):
    """
    Create an auction listing.

    ``params`` holds ``item_id``, ``starting_price``, ``duration_days`` and
    optionally ``title``, ``buy_it_now_price``, ``start_time``,
    ``shipping_cost``, ``description`` and ``detail_images``. An auction with
    a future ``start_time`` is scheduled; otherwise it starts now.
    """
    ensure_not_suspended(seller_id)

    item_id = _item_id(params)
    starting_price = validate_price(
        params.get('starting_price'),
        'starting_price',
        minimum=auction_settings.MIN_STARTING_PRICE,
    )
    buy_it_now_price = None
    if params.get('buy_it_now_price') is not None:
        buy_it_now_price = _validate_buy_it_now(params['buy_it_now_price'], starting_price)
    duration_days = _validate_duration(params.get('duration_days'))
    shipping_cost = _validate_shipping(params.get('shipping_cost'))
    detail_images = _validate_images(params.get('detail_images'))

    now = timezone.now()
    start_time = params.get('start_time')
    if start_time is not None and start_time > now:
        status = Listing.Status.SCHEDULED
    else:
        status = Listing.Status.ACTIVE
        start_time = now

    _ensure_item_available(item_id)

    listing = _insert(Listing(
        seller_id=seller_id,
        item_id=item_id,
        title=params.get('title') or '',
        listing_type=Listing.ListingType.AUCTION,
        status=status,
        starting_price=starting_price,
        current_price=starting_price,
        buy_it_now_price=buy_it_now_price,
        start_time=start_time,
        end_time=start_time + timedelta(days=duration_days),
        shipping_cost=shipping_cost,
        description=params.get('description') or '',
        detail_images=detail_images,
    ))
    _mark_seller(seller_id, now)

    logger.info(f"Seller {seller_id} created {status} auction {listing.pk} for item {item_id}")
    return listing


@transaction.atomic
def create_fixed_price_listing(seller_id, params):
    """
    Create a fixed-price listing that runs for the configured number of days.

    ``params`` holds ``item_id``, ``price`` and optionally ``title``,
    ``accepts_offers``, ``min_offer_amount``, ``shipping_cost``,
    ``description`` and ``detail_images``.
    """
    ensure_not_suspended(seller_id)

    item_id = _item_id(params)
    price = validate_price(
        params.get('price'),
        'price',
        minimum=auction_settings.MIN_FIXED_PRICE,
    )
    accepts_offers = bool(params.get('accepts_offers', False))
    min_offer_amount = None
    if accepts_offers and params.get('min_offer_amount') is not None:
        min_offer_amount = validate_price(
            params['min_offer_amount'],
            'min_offer_amount',
            minimum=auction_settings.MIN_FIXED_PRICE,
        )
        if min_offer_amount >= price:
            raise ValidationError('min_offer_amount', "min_offer_amount must be less than the price.")
    shipping_cost = _validate_shipping(params.get('shipping_cost'))
    detail_images = _validate_images(params.get('detail_images'))

    _ensure_item_available(item_id)

    now = timezone.now()
    listing = _insert(Listing(
        seller_id=seller_id,
        item_id=item_id,
        title=params.get('title') or '',
        listing_type=Listing.ListingType.FIXED_PRICE,
        status=Listing.Status.ACTIVE,
        price=price,
        current_price=price,
        accepts_offers=accepts_offers,
        min_offer_amount=min_offer_amount,
        start_time=now,
        end_time=now + timedelta(days=auction_settings.FIXED_PRICE_LISTING_DAYS),
        shipping_cost=shipping_cost,
        description=params.get('description') or '',
        detail_images=detail_images,
    ))
    _mark_seller(seller_id, now)

    logger.info(f"Seller {seller_id} created fixed-price listing {listing.pk} for item {item_id}")
    return listing


@transaction.atomic
def update_listing(listing_id, seller_id, patch):
    """Edit the description, images or Buy-It-Now price of an open listing."""
    for key in patch:
        if key not in EDITABLE_FIELDS:
            raise ValidationError(key, f"{key} cannot be changed after listing.")

    listing = lock_listing(listing_id)
    if listing.seller_id != seller_id:
        raise Forbidden("Only the seller can edit this listing.")
    if not listing.is_open:
        raise InvalidState(f"A {listing.status} listing cannot be edited.")

    fields = []
    if 'description' in patch:
        listing.description = patch['description'] or ''
        fields.append('description')
    if 'detail_images' in patch:
        listing.detail_images = _validate_images(patch['detail_images'])
        fields.append('detail_images')
    if 'buy_it_now_price' in patch:
        if not listing.is_auction:
            raise ValidationError('buy_it_now_price', "Only auctions have a Buy-It-Now price.")
        if listing.has_bids:
            raise InvalidState("Prices cannot be changed once bidding has started.")
        value = patch['buy_it_now_price']
        listing.buy_it_now_price = (
            None if value is None else _validate_buy_it_now(value, listing.starting_price)
        )
        fields.append('buy_it_now_price')

    if fields:
        save_listing(listing, fields)
    return listing


@transaction.atomic
def cancel_listing(listing_id, seller_id, reason):
    """
    Withdraw a listing.

    Auctions can be cancelled only before the first bid. Cancelling a
    fixed-price listing rejects its open offers.
    """
    if reason not in Listing.CancelReason.values:
        raise ValidationError('reason', f"reason must be one of: {', '.join(Listing.CancelReason.values)}.")

    listing = lock_listing(listing_id)
    if listing.seller_id != seller_id:
        raise Forbidden("Only the seller can cancel this listing.")
    if not listing.is_open:
        raise InvalidState(f"A {listing.status} listing cannot be cancelled.")
    if listing.is_auction and listing.has_bids:
        raise InvalidState("An auction with bids cannot be cancelled.")

    now = timezone.now()
    listing.status = Listing.Status.CANCELLED
    listing.cancel_reason = reason
    save_listing(listing, ['status', 'cancel_reason'])

    events = []
    if not listing.is_auction:
        events = reject_open_offers(listing, now)

    logger.info(f"Listing {listing.pk} cancelled by seller ({reason})")
    notifications.dispatch_on_commit(events)
    return listing, events


@transaction.atomic
def purchase_listing(listing_id, buyer_id):
    """Buy a fixed-price listing outright at its asking price."""
    ensure_not_suspended(buyer_id)

    listing = lock_listing(listing_id)
    now = timezone.now()
    if listing.is_auction:
        raise InvalidState("Auctions are bought by bidding or Buy-It-Now.")
    if listing.status != Listing.Status.ACTIVE or listing.is_expired(now):
        raise InvalidState("This listing is no longer available.")
    if listing.seller_id == buyer_id:
        raise Forbidden("You cannot buy your own listing.")

    fields = record_sale(listing, buyer_id, listing.price, now)
    save_listing(listing, fields)

    events = reject_open_offers(listing, now)
    events.extend(sale_events(listing))

    logger.info(f"Listing {listing.pk} purchased by {buyer_id} for ${listing.price}")
    notifications.dispatch_on_commit(events)
    return listing, events


def get_listing(listing_id, viewer_id=None):
    """
    Fetch a listing for display.

    Sets ``is_watching`` and ``viewer_bid`` (the viewer's live bid, if any) on
    the returned instance.
    """
    try:
        listing = Listing.objects.select_related('seller', 'high_bidder', 'winner').get(pk=listing_id)
    except (Listing.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('listing', listing_id)

    listing.is_watching = False
    listing.viewer_bid = None
    if viewer_id is not None:
        listing.is_watching = Watchlist.objects.filter(user_id=viewer_id, listing=listing).exists()
        listing.viewer_bid = (
            Bid.objects.filter(listing=listing, bidder_id=viewer_id).order_by('-sequence').first()
        )
    return listing


def search_listings(filters=None, sort='ending_soonest', limit=50, offset=0, viewer_id=None):
    """
    Browse active listings.

    Supported ``filters``: ``listing_type``, ``seller_id``, ``min_price``,
    ``max_price``, ``has_buy_it_now`` and ``ending_soon``.
    """
    filters = filters or {}
    if sort not in SORTS:
        raise ValidationError('sort', f"sort must be one of: {', '.join(SORTS)}.")

    now = timezone.now()
    listings = Listing.objects.filter(
        status=Listing.Status.ACTIVE,
        end_time__gt=now,
    ).select_related('seller')

    listing_type = filters.get('listing_type')
    if listing_type:
        if listing_type not in Listing.ListingType.values:
            raise ValidationError('listing_type', f"Unknown listing type: {listing_type}")
        listings = listings.filter(listing_type=listing_type)
    if filters.get('seller_id') is not None:
        listings = listings.filter(seller_id=filters['seller_id'])
    if filters.get('min_price') is not None:
        listings = listings.filter(current_price__gte=to_amount(filters['min_price'], 'min_price'))
    if filters.get('max_price') is not None:
        listings = listings.filter(current_price__lte=to_amount(filters['max_price'], 'max_price'))
    if filters.get('has_buy_it_now'):
        listings = listings.filter(
            buy_it_now_price__isnull=False,
            buy_it_now_price__gt=0,
        )
    if filters.get('ending_soon'):
        listings = listings.filter(
            end_time__lte=now + timedelta(hours=auction_settings.ENDING_SOON_HOURS)
        )

    if viewer_id is not None:
        listings = listings.annotate(
            is_watching=Exists(Watchlist.objects.filter(user_id=viewer_id, listing=OuterRef('pk')))
        )

    return list(listings.order_by(*SORTS[sort])[offset:offset + limit])


def get_seller_listings(seller_id, status=None):
    listings = Listing.objects.filter(seller_id=seller_id)
    if status:
        if status not in Listing.Status.values:
            raise ValidationError('status', f"Unknown status: {status}")
        listings = listings.filter(status=status)
    return list(listings.order_by('-created_at'))


def get_won_listings(user_id):
    """Listings the user bought, by auction, Buy-It-Now, offer or purchase."""
    return list(
        Listing.objects.filter(
            winner_id=user_id,
            status=Listing.Status.SOLD,
        ).select_related('seller').order_by('-updated_at')
    )


def activate_if_due(listing, now):
    """Promote a locked scheduled listing whose start time has arrived."""
    if listing.status == Listing.Status.SCHEDULED and listing.start_time <= now:
        listing.status = Listing.Status.ACTIVE
        return ['status']
    return []
