import uuid
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.utils import timezone

from .engine.pricing import minimum_next_bid


class User(AbstractUser):
    """Marketplace account. Buyers and sellers share one model."""
    phone_number = models.CharField(
        max_length=20,
        blank=True,
        help_text="Number used for SMS notifications, converted to E.164 when sending"
    )
    is_suspended = models.BooleanField(
        default=False,
        help_text="Suspended accounts cannot bid, list items or make offers"
    )
    positive_ratings = models.PositiveIntegerField(default=0)
    negative_ratings = models.PositiveIntegerField(default=0)
    seller_since = models.DateTimeField(null=True, blank=True)

    @property
    def total_ratings(self):
        return self.positive_ratings + self.negative_ratings


class Listing(models.Model):
    """An item for sale, either as a timed auction or at a fixed price."""
    class ListingType(models.TextChoices):
        AUCTION = 'auction', 'Auction'
        FIXED_PRICE = 'fixed_price', 'Fixed Price'

    class Status(models.TextChoices):
        SCHEDULED = 'scheduled', 'Scheduled'
        ACTIVE = 'active', 'Active'
        ENDED = 'ended', 'Ended'
        SOLD = 'sold', 'Sold'
        UNSOLD = 'unsold', 'Unsold'
        CANCELLED = 'cancelled', 'Cancelled'

    class PaymentStatus(models.TextChoices):
        NONE = 'none', 'None'
        PENDING = 'pending', 'Pending'
        PAID = 'paid', 'Paid'

    class CancelReason(models.TextChoices):
        CHANGED_MIND = 'changed_mind', 'Changed Mind'
        SOLD_ELSEWHERE = 'sold_elsewhere', 'Sold Elsewhere'
        PRICE_TOO_LOW = 'price_too_low', 'Price Too Low'
        OTHER = 'other', 'Other'

    OPEN_STATUSES = [Status.SCHEDULED, Status.ACTIVE]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='listings'
    )
    item_id = models.CharField(
        max_length=64,
        help_text="Opaque reference to the catalog item being sold"
    )
    title = models.CharField(max_length=200, blank=True)
    listing_type = models.CharField(
        max_length=12,
        choices=ListingType.choices,
        default=ListingType.AUCTION
    )
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.ACTIVE
    )

    # Pricing
    starting_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Asking price for fixed-price listings"
    )
    current_price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Visible price after proxy-bid resolution"
    )
    buy_it_now_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    # Bidding projection, cached from the bid log
    high_bidder = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='leading_listings'
    )
    bid_count = models.PositiveIntegerField(default=0)

    # Sale
    winner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='won_listings'
    )
    winning_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    # Timing
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()

    # Offers (fixed price only)
    accepts_offers = models.BooleanField(default=False)
    min_offer_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    shipping_cost = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    description = models.TextField(blank=True)
    detail_images = models.JSONField(default=list, blank=True)

    # Payment
    payment_status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.NONE
    )
    payment_deadline = models.DateTimeField(null=True, blank=True)
    payment_reference = models.CharField(max_length=255, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    cancel_reason = models.CharField(max_length=20, choices=CancelReason.choices, blank=True)
    expiring_notice_sent_at = models.DateTimeField(null=True, blank=True)

    # Optimistic concurrency token, bumped on every write
    version = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['listing_type', 'status', 'end_time'], name='auctions_li_listing_6b1f0e_idx'),
            models.Index(fields=['status', 'start_time'], name='auctions_li_status_4c2a9d_idx'),
            models.Index(fields=['seller', 'status'], name='auctions_li_seller__8e7b21_idx'),
            models.Index(fields=['item_id'], name='auctions_li_item_id_0d93f4_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['item_id'],
                condition=Q(status__in=['scheduled', 'active']),
                name='unique_open_listing_per_item',
            ),
        ]

    def __str__(self):
        return self.title or f"{self.get_listing_type_display()} {self.pk}"

    @property
    def is_auction(self):
        return self.listing_type == self.ListingType.AUCTION

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES

    @property
    def has_bids(self):
        return self.bid_count > 0

    def is_expired(self, now=None):
        """Check if the listing's time window has elapsed."""
        return (now or timezone.now()) >= self.end_time

    @property
    def time_remaining(self):
        """Return time remaining until the listing ends, or None."""
        if self.status not in self.OPEN_STATUSES:
            return None
        remaining = self.end_time - timezone.now()
        if remaining.total_seconds() > 0:
            return remaining
        return None

    @property
    def minimum_next_bid(self):
        """Smallest maximum bid the engine will currently accept."""
        if not self.is_auction:
            return None
        return minimum_next_bid(self.current_price, self.starting_price, self.has_bids)


class Bid(models.Model):
    """
    A bidder's declared maximum on an auction.

    Append-only: a bidder raises by placing another bid, and only their
    latest bid is live.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        related_name='bids'
    )
    bidder = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='bids'
    )
    max_bid = models.DecimalField(max_digits=10, decimal_places=2)
    price_after = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        help_text="Visible listing price once this bid was resolved"
    )
    bidder_number = models.PositiveIntegerField(help_text="Anonymous bidder number within the listing")
    sequence = models.PositiveIntegerField(help_text="Insertion order within the listing")
    placed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['listing', 'sequence']
        indexes = [
            models.Index(fields=['listing', 'bidder'], name='auctions_bi_listing_3f6e52_idx'),
            models.Index(fields=['bidder', 'placed_at'], name='auctions_bi_bidder__a41c07_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['listing', 'sequence'],
                name='unique_bid_sequence_per_listing',
            ),
        ]

    def __str__(self):
        return f"Bidder {self.bidder_number} max ${self.max_bid} on {self.listing_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Bids are append-only and cannot be modified.")
        super().save(*args, **kwargs)


class Offer(models.Model):
    """A buyer's offer on a fixed-price listing and the seller's answer."""
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        ACCEPTED = 'accepted', 'Accepted'
        REJECTED = 'rejected', 'Rejected'
        COUNTERED = 'countered', 'Countered'
        EXPIRED = 'expired', 'Expired'

    class Action(models.TextChoices):
        ACCEPT = 'accept', 'Accept'
        REJECT = 'reject', 'Reject'
        COUNTER = 'counter', 'Counter'

    OPEN_STATUSES = [Status.PENDING, Status.COUNTERED]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        related_name='offers'
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='offers'
    )
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    counter_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    accepted_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.PENDING
    )
    expires_at = models.DateTimeField()
    responded_at = models.DateTimeField(null=True, blank=True)
    version = models.PositiveIntegerField(default=1)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['listing', 'status'], name='auctions_of_listing_72d0b8_idx'),
            models.Index(fields=['buyer', 'status'], name='auctions_of_buyer_i_19ce4a_idx'),
            models.Index(fields=['status', 'expires_at'], name='auctions_of_status_e5b830_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['listing', 'buyer'],
                condition=Q(status__in=['pending', 'countered']),
                name='one_open_offer_per_buyer',
            ),
        ]

    def __str__(self):
        return f"${self.amount} offer on {self.listing_id} ({self.status})"

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES

    def is_past_expiry(self, now=None):
        return self.is_open and (now or timezone.now()) >= self.expires_at


class Watchlist(models.Model):
    """User's watchlist of listings they want to follow."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='watchlist'
    )
    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        related_name='watchers'
    )
    added_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ('user', 'listing')
        ordering = ['-added_at']

    def __str__(self):
        return f"{self.user_id} watching {self.listing_id}"


class SellerRating(models.Model):
    """Write-once feedback left by the buyer of a completed sale."""
    class RatingType(models.TextChoices):
        POSITIVE = 'positive', 'Positive'
        NEGATIVE = 'negative', 'Negative'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ratings_received'
    )
    rater = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='ratings_given'
    )
    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        related_name='ratings'
    )
    rating_type = models.CharField(max_length=10, choices=RatingType.choices)
    comment = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(
                fields=['listing', 'rater'],
                name='one_rating_per_listing_rater',
            ),
        ]

    def __str__(self):
        return f"{self.rating_type} rating for {self.seller_id}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Ratings are write-once.")
        super().save(*args, **kwargs)


class Notification(models.Model):
    """
    Outbox record of a user-facing event.

    Rows are written in the same transaction as the state change that caused
    them and handed to the configured dispatcher after commit.
    """
    class EventType(models.TextChoices):
        OUTBID = 'outbid', 'Outbid'
        WON = 'won', 'Won'
        ENDED = 'ended', 'Ended'
        AUCTION_SOLD = 'auction_sold', 'Item Sold'
        PAYMENT_RECEIVED = 'payment_received', 'Payment Received'
        OFFER_RECEIVED = 'offer_received', 'Offer Received'
        OFFER_ACCEPTED = 'offer_accepted', 'Offer Accepted'
        OFFER_REJECTED = 'offer_rejected', 'Offer Rejected'
        OFFER_COUNTERED = 'offer_countered', 'Offer Countered'
        COUNTER_REJECTED = 'counter_rejected', 'Counter-Offer Declined'
        OFFER_EXPIRED = 'offer_expired', 'Offer Expired'
        LISTING_EXPIRING = 'listing_expiring', 'Listing Expiring'
        LISTING_EXPIRED = 'listing_expired', 'Listing Expired'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='notifications'
    )
    event_type = models.CharField(max_length=20, choices=EventType.choices)
    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='notifications'
    )
    offer = models.ForeignKey(
        Offer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications'
    )
    title = models.CharField(max_length=200)
    message = models.TextField()
    metadata = models.JSONField(default=dict, blank=True)
    is_read = models.BooleanField(default=False)

    dispatched_at = models.DateTimeField(null=True, blank=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_read'], name='auctions_no_user_id_5b9a13_idx'),
            models.Index(fields=['dispatched_at'], name='auctions_no_dispatc_c80f2e_idx'),
            models.Index(fields=['listing', 'event_type'], name='auctions_no_listing_91d4a6_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} for {self.user_id}"
