"""
Watchlists and seller reputation.
"""
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction

from auctions.exceptions import Conflict, Forbidden, NotFound, ValidationError
from auctions.models import Listing, SellerRating, User, Watchlist

HERO_THRESHOLD = 80
VILLAIN_THRESHOLD = 50


def _get_listing(listing_id):
    try:
        return Listing.objects.get(pk=listing_id)
    except (Listing.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('listing', listing_id)


def add_to_watchlist(user_id, listing_id):
    listing = _get_listing(listing_id)
    entry, _ = Watchlist.objects.get_or_create(user_id=user_id, listing=listing)
    return entry


def remove_from_watchlist(user_id, listing_id):
    """Remove a listing from the user's watchlist. Removing twice is fine."""
    Watchlist.objects.filter(user_id=user_id, listing_id=listing_id).delete()


def get_watchlist(user_id):
    return list(
        Watchlist.objects.filter(user_id=user_id)
        .select_related('listing', 'listing__seller')
        .order_by('-added_at')
    )


def get_watchers(listing_id):
    """Users watching a listing, as a queryset."""
    return User.objects.filter(watchlist__listing_id=listing_id).distinct()


def positive_percentage(seller):
    """Share of positive ratings, rounded to a whole percent. None when unrated."""
    total = seller.positive_ratings + seller.negative_ratings
    if total == 0:
        return None
    return round(seller.positive_ratings * 100 / total)


def seller_reputation(seller):
    """
    Reputation band shown next to a seller's name.

    hero at 80% positive or better, villain below 50%, neutral otherwise and
    for sellers with no ratings yet.
    """
    percentage = positive_percentage(seller)
    if percentage is None:
        return 'neutral'
    if percentage >= HERO_THRESHOLD:
        return 'hero'
    if percentage < VILLAIN_THRESHOLD:
        return 'villain'
    return 'neutral'


def submit_seller_rating(rater_id, listing_id, rating_type, comment=''):
    """Rate the seller of a listing the rater bought. Once per listing."""
    if rating_type not in SellerRating.RatingType.values:
        raise ValidationError('rating_type', "rating_type must be 'positive' or 'negative'.")

    listing = _get_listing(listing_id)
    if listing.status != Listing.Status.SOLD or listing.winner_id != rater_id:
        raise Forbidden("Only the buyer of a completed sale can rate the seller.")

    if SellerRating.objects.filter(listing=listing, rater_id=rater_id).exists():
        raise Conflict("You have already rated this sale.")

    try:
        with transaction.atomic():
            rating = SellerRating.objects.create(
                seller_id=listing.seller_id,
                rater_id=rater_id,
                listing=listing,
                rating_type=rating_type,
                comment=comment or '',
            )
    except IntegrityError:
        raise Conflict("You have already rated this sale.")
    return rating


def get_seller_ratings(seller_id, limit=20):
    return list(
        SellerRating.objects.filter(seller_id=seller_id)
        .select_related('rater', 'listing')
        .order_by('-created_at')[:limit]
    )


def get_seller_profile(seller_id):
    try:
        seller = User.objects.get(pk=seller_id)
    except (User.DoesNotExist, ValueError):
        raise NotFound('seller', seller_id)

    return {
        'seller': seller,
        'positive_ratings': seller.positive_ratings,
        'negative_ratings': seller.negative_ratings,
        'total_ratings': seller.total_ratings,
        'positive_percentage': positive_percentage(seller),
        'reputation': seller_reputation(seller),
        'seller_since': seller.seller_since,
        'active_listings': Listing.objects.filter(
            seller_id=seller_id,
            status=Listing.Status.ACTIVE,
        ).count(),
    }
