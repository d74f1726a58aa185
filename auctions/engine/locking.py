"""
Per-listing serialization.

Every listing mutation runs inside ``transaction.atomic`` and goes through
these helpers: a row lock on read and a compare-and-swap on ``version`` on
write. Different listings never share a lock.
"""
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import F
from django.utils import timezone

from auctions.exceptions import ConcurrentModification, NotFound
from auctions.models import Listing


def lock_listing(listing_id):
    """Fetch a listing with a row lock. Must be called inside a transaction."""
    try:
        return Listing.objects.select_for_update().get(pk=listing_id)
    except (Listing.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('listing', listing_id)


def save_listing(listing, fields):
    """
    Write ``fields`` of ``listing`` if nobody else has written it since it was read.

    Bumps ``version`` on success and raises ConcurrentModification otherwise.
    """
    now = timezone.now()
    values = {}
    for name in fields:
        field = Listing._meta.get_field(name)
        values[field.attname] = getattr(listing, field.attname)
    values['version'] = F('version') + 1
    values['updated_at'] = now

    updated = Listing.objects.filter(
        pk=listing.pk,
        version=listing.version,
    ).update(**values)
    if updated != 1:
        raise ConcurrentModification(listing.pk)

    listing.version += 1
    listing.updated_at = now
    return listing


def transition_status(listing_id, from_statuses, to_status, **conditions):
    """
    Conditionally move a listing between statuses.

    Returns False when the listing was no longer in one of ``from_statuses``,
    which is how concurrent closers detect they lost the race.
    """
    updated = Listing.objects.filter(
        pk=listing_id,
        status__in=from_statuses,
        **conditions,
    ).update(
        status=to_status,
        version=F('version') + 1,
        updated_at=timezone.now(),
    )
    return updated == 1
