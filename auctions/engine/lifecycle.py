"""
Auction Lifecycle Closer.

Scheduled sweeps that open, close and expire listings. Every transition is a
conditional update on the listing's current status, so a sweep can run on any
cadence, twice in a row, or concurrently with another sweep.
"""
import logging
from datetime import timedelta

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from auctions import notifications
from auctions.conf import auction_settings
from auctions.models import Listing, Notification, Offer

from .locking import lock_listing, save_listing, transition_status
from .offers import expire_due_offers, reject_open_offers
from .sales import record_sale, sale_events

logger = logging.getLogger(__name__)


def _close_auction(listing_id, now):
    """
    Close one past-due auction.

    Returns the queued events, or None when another run already closed it.
    """
    with transaction.atomic():
        if not transition_status(
            listing_id,
            [Listing.Status.ACTIVE],
            Listing.Status.ENDED,
            listing_type=Listing.ListingType.AUCTION,
            end_time__lte=now,
        ):
            return None

        listing = lock_listing(listing_id)
        if listing.high_bidder_id:
            fields = record_sale(listing, listing.high_bidder_id, listing.current_price, now)
            save_listing(listing, fields)
            events = sale_events(listing)
            logger.info(
                f"Auction {listing.pk} sold to {listing.winner_id} for ${listing.winning_amount}"
            )
        else:
            listing.status = Listing.Status.UNSOLD
            save_listing(listing, ['status'])
            events = [notifications.queue(
                listing.seller_id,
                Notification.EventType.ENDED,
                listing=listing,
                sold=False,
            )]
            logger.info(f"Auction {listing.pk} ended without bids")
    return events


def process_ended_auctions(now=None):
    """
    Close every active auction whose end time has passed.

    Returns:
        dict: ``processed`` (closed by this run), ``skipped`` (closed by
        someone else first) and ``errors`` (messages for listings that failed
        or whose notifications could not be delivered)
    """
    now = now or timezone.now()
    result = {'processed': 0, 'skipped': 0, 'errors': []}

    due = Listing.objects.filter(
        listing_type=Listing.ListingType.AUCTION,
        status=Listing.Status.ACTIVE,
        end_time__lte=now,
    ).order_by('end_time').values_list('pk', flat=True)

    for listing_id in list(due):
        try:
            events = _close_auction(listing_id, now)
        except Exception as e:
            logger.exception(f"Failed to close auction {listing_id}")
            result['errors'].append(f"listing {listing_id}: {e}")
            continue

        if events is None:
            result['skipped'] += 1
            continue

        result['processed'] += 1
        result['errors'].extend(notifications.dispatch(events))

    return result


def activate_scheduled_listings(now=None):
    """Open scheduled auctions whose start time has arrived."""
    now = now or timezone.now()
    activated = 0
    due = Listing.objects.filter(
        status=Listing.Status.SCHEDULED,
        start_time__lte=now,
    ).values_list('pk', flat=True)
    for listing_id in list(due):
        if transition_status(
            listing_id,
            [Listing.Status.SCHEDULED],
            Listing.Status.ACTIVE,
            start_time__lte=now,
        ):
            activated += 1
            logger.info(f"Auction {listing_id} is now active")
    return activated


def expire_offers(now=None):
    """Expire every open offer past its expiry and tell the buyers."""
    now = now or timezone.now()
    with transaction.atomic():
        events = expire_due_offers(Offer.objects.all(), now)
    errors = notifications.dispatch(events)
    return {'expired': len(events), 'errors': errors}


def _warn_expiring(now):
    """Warn sellers once about fixed-price listings about to run out."""
    events = []
    horizon = now + timedelta(hours=auction_settings.ENDING_SOON_HOURS)
    expiring = Listing.objects.filter(
        listing_type=Listing.ListingType.FIXED_PRICE,
        status=Listing.Status.ACTIVE,
        end_time__gt=now,
        end_time__lte=horizon,
        expiring_notice_sent_at__isnull=True,
    )
    for listing in expiring:
        with transaction.atomic():
            claimed = Listing.objects.filter(
                pk=listing.pk,
                expiring_notice_sent_at__isnull=True,
            ).update(expiring_notice_sent_at=now, version=F('version') + 1)
            if claimed:
                events.append(notifications.queue(
                    listing.seller_id,
                    Notification.EventType.LISTING_EXPIRING,
                    listing=listing,
                    end_time=listing.end_time,
                ))
    return events


def _expire_listing(listing_id, now):
    with transaction.atomic():
        if not transition_status(
            listing_id,
            [Listing.Status.ACTIVE],
            Listing.Status.UNSOLD,
            listing_type=Listing.ListingType.FIXED_PRICE,
            end_time__lte=now,
        ):
            return None

        listing = Listing.objects.get(pk=listing_id)
        events = expire_due_offers(Offer.objects.filter(listing=listing), now)
        events.extend(reject_open_offers(listing, now))
        events.append(notifications.queue(
            listing.seller_id,
            Notification.EventType.LISTING_EXPIRED,
            listing=listing,
        ))
        logger.info(f"Fixed-price listing {listing_id} expired unsold")
    return events


def expire_listings(now=None):
    """
    Expire fixed-price listings past their end time.

    Open offers on an expired listing are closed out and the seller is told.
    Sellers whose listing runs out within a day get a one-time warning.
    """
    now = now or timezone.now()
    result = {'expired': 0, 'warned': 0, 'errors': []}

    warnings = _warn_expiring(now)
    result['warned'] = len(warnings)
    result['errors'].extend(notifications.dispatch(warnings))

    due = Listing.objects.filter(
        listing_type=Listing.ListingType.FIXED_PRICE,
        status=Listing.Status.ACTIVE,
        end_time__lte=now,
    ).values_list('pk', flat=True)

    for listing_id in list(due):
        try:
            events = _expire_listing(listing_id, now)
        except Exception as e:
            logger.exception(f"Failed to expire listing {listing_id}")
            result['errors'].append(f"listing {listing_id}: {e}")
            continue
        if events is None:
            continue
        result['expired'] += 1
        result['errors'].extend(notifications.dispatch(events))

    return result


def run_lifecycle(now=None):
    """Run every sweep once and retry undelivered notifications."""
    now = now or timezone.now()

    activated = activate_scheduled_listings(now)
    auctions = process_ended_auctions(now)
    offers = expire_offers(now)
    listings = expire_listings(now)
    retry_errors = notifications.dispatch_pending()

    return {
        'activated': activated,
        'processed': auctions['processed'],
        'skipped': auctions['skipped'],
        'offers_expired': offers['expired'],
        'listings_expired': listings['expired'],
        'listings_warned': listings['warned'],
        'errors': auctions['errors'] + offers['errors'] + listings['errors'] + retry_errors,
    }
