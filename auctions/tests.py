"""
Tests for the listing store, money helpers, sales and reputation.

Tests cover:
- Increment table and amount parsing
- Auction and fixed-price listing creation rules
- Editing, cancelling and searching listings
- Fixed-price purchase, checkout and payment
- Watchlists, seller ratings and reputation bands

Run with: python manage.py test auctions -v 2
"""

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase, override_settings
from django.utils import timezone

from .engine.bidding import place_bid
from .engine.listings import (
    cancel_listing,
    create_auction,
    create_fixed_price_listing,
    get_listing,
    get_seller_listings,
    get_won_listings,
    purchase_listing,
    search_listings,
    update_listing,
)
from .engine.offers import create_offer
from .engine.pricing import bid_increment, minimum_next_bid, validate_price
from .engine.reputation import (
    add_to_watchlist,
    get_seller_profile,
    get_seller_ratings,
    get_watchers,
    get_watchlist,
    remove_from_watchlist,
    seller_reputation,
    submit_seller_rating,
)
from .engine.sales import checkout_amount, mark_paid, start_checkout
from .exceptions import (
    AccountSuspended,
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from .models import Listing, Notification, Offer, User


class BaseTestCase(TestCase):
    """Base test case with common setup."""

    def setUp(self):
        self.seller = User.objects.create_user(
            username='seller',
            email='seller@test.com',
            password='test123'
        )
        self.buyer = User.objects.create_user(
            username='buyer',
            email='buyer@test.com',
            password='test123'
        )
        self.other = User.objects.create_user(
            username='other',
            email='other@test.com',
            password='test123'
        )

    def make_auction(self, **overrides):
        params = {
            'item_id': 'asm-300',
            'title': 'Amazing Spider-Man #300',
            'starting_price': Decimal('10'),
            'duration_days': 7,
        }
        params.update(overrides)
        return create_auction(self.seller.pk, params)

    def make_fixed(self, **overrides):
        params = {
            'item_id': 'xmen-1',
            'title': 'X-Men #1',
            'price': Decimal('40'),
            'accepts_offers': True,
            'min_offer_amount': Decimal('25'),
        }
        params.update(overrides)
        return create_fixed_price_listing(self.seller.pk, params)


class PricingTest(TestCase):
    """Test the increment table and amount validation."""

    def test_increment_table_boundaries(self):
        """Each band starts at its lower bound."""
        cases = [
            ('0.99', '0.05'),
            ('1.00', '0.25'),
            ('4.99', '0.25'),
            ('5.00', '0.50'),
            ('24.99', '0.50'),
            ('25.00', '1.00'),
            ('99.99', '1.00'),
            ('100.00', '2.50'),
            ('249.99', '2.50'),
            ('250.00', '5.00'),
            ('999.99', '5.00'),
            ('1000.00', '10.00'),
            ('25000.00', '10.00'),
        ]
        for price, increment in cases:
            self.assertEqual(bid_increment(Decimal(price)), Decimal(increment), price)

    def test_minimum_next_bid(self):
        """Starting price opens; afterwards current price plus one increment."""
        self.assertEqual(minimum_next_bid(Decimal('10'), Decimal('10'), False), Decimal('10'))
        self.assertEqual(minimum_next_bid(Decimal('15.50'), Decimal('10'), True), Decimal('16.00'))

    def test_whole_units_only(self):
        """Fractional amounts are rejected except the legacy 0.99."""
        self.assertEqual(validate_price('0.99', 'price'), Decimal('0.99'))
        self.assertEqual(validate_price(12, 'price'), Decimal('12.00'))
        with self.assertRaises(ValidationError):
            validate_price('10.50', 'price')

    def test_malformed_amounts(self):
        for value in ['abc', None, True, '1.234', 'NaN', '0', '-5']:
            with self.assertRaises(ValidationError, msg=repr(value)):
                validate_price(value, 'price')

    def test_minimum_enforced(self):
        with self.assertRaises(ValidationError) as ctx:
            validate_price('0.50', 'starting_price', minimum=Decimal('0.99'))
        self.assertEqual(ctx.exception.field, 'starting_price')


class CreateAuctionTest(BaseTestCase):
    """Test auction creation rules."""

    def test_create_active_auction(self):
        listing = self.make_auction(buy_it_now_price=Decimal('50'))

        self.assertEqual(listing.status, Listing.Status.ACTIVE)
        self.assertEqual(listing.current_price, Decimal('10'))
        self.assertEqual(listing.end_time - listing.start_time, timedelta(days=7))
        self.assertEqual(listing.version, 1)

        self.seller.refresh_from_db()
        self.assertIsNotNone(self.seller.seller_since)

    def test_future_start_is_scheduled(self):
        start = timezone.now() + timedelta(days=1)
        listing = self.make_auction(start_time=start)

        self.assertEqual(listing.status, Listing.Status.SCHEDULED)
        self.assertEqual(listing.start_time, start)
        self.assertEqual(listing.end_time, start + timedelta(days=7))

    def test_legacy_starting_price_accepted(self):
        listing = self.make_auction(starting_price=Decimal('0.99'))
        self.assertEqual(listing.starting_price, Decimal('0.99'))

    def test_invalid_parameters(self):
        """Each structural rule raises a field-specific validation error."""
        cases = [
            ({'starting_price': Decimal('0.50')}, 'starting_price'),
            ({'starting_price': Decimal('10.50')}, 'starting_price'),
            ({'buy_it_now_price': Decimal('10')}, 'buy_it_now_price'),
            ({'duration_days': 0}, 'duration_days'),
            ({'duration_days': 15}, 'duration_days'),
            ({'detail_images': ['https://img.test/%d.jpg' % i for i in range(5)]}, 'detail_images'),
            ({'shipping_cost': Decimal('-1')}, 'shipping_cost'),
        ]
        for overrides, field in cases:
            with self.assertRaises(ValidationError, msg=field) as ctx:
                self.make_auction(**overrides)
            self.assertEqual(ctx.exception.field, field)
        self.assertFalse(Listing.objects.exists())

    def test_one_open_listing_per_item(self):
        self.make_auction()
        with self.assertRaises(Conflict):
            self.make_auction()
        with self.assertRaises(Conflict):
            self.make_fixed(item_id='asm-300')

    def test_item_can_be_relisted_after_cancel(self):
        first = self.make_auction()
        cancel_listing(first.pk, self.seller.pk, Listing.CancelReason.CHANGED_MIND)

        second = self.make_auction()
        self.assertNotEqual(first.pk, second.pk)

    def test_suspended_seller(self):
        self.seller.is_suspended = True
        self.seller.save()

        with self.assertRaises(AccountSuspended):
            self.make_auction()

    @override_settings(AUCTIONS_MAX_DURATION_DAYS=10)
    def test_duration_limit_is_configurable(self):
        with self.assertRaises(ValidationError):
            self.make_auction(duration_days=12)


class CreateFixedPriceTest(BaseTestCase):
    """Test fixed-price listing creation."""

    def test_create_fixed_price(self):
        listing = self.make_fixed()

        self.assertEqual(listing.listing_type, Listing.ListingType.FIXED_PRICE)
        self.assertEqual(listing.status, Listing.Status.ACTIVE)
        self.assertEqual(listing.current_price, Decimal('40'))
        self.assertEqual(listing.end_time - listing.start_time, timedelta(days=30))
        self.assertTrue(listing.accepts_offers)
        self.assertIsNone(listing.minimum_next_bid)

    def test_min_offer_must_be_below_price(self):
        with self.assertRaises(ValidationError) as ctx:
            self.make_fixed(min_offer_amount=Decimal('40'))
        self.assertEqual(ctx.exception.field, 'min_offer_amount')

    def test_min_offer_ignored_without_offers(self):
        listing = self.make_fixed(accepts_offers=False, min_offer_amount=Decimal('25'))
        self.assertIsNone(listing.min_offer_amount)


class UpdateListingTest(BaseTestCase):
    """Test seller edits."""

    def test_update_description_and_images(self):
        listing = self.make_auction()
        updated = update_listing(listing.pk, self.seller.pk, {
            'description': 'CGC 9.8, white pages',
            'detail_images': ['https://img.test/back.jpg'],
        })

        self.assertEqual(updated.description, 'CGC 9.8, white pages')
        self.assertEqual(updated.version, 2)
        listing.refresh_from_db()
        self.assertEqual(listing.detail_images, ['https://img.test/back.jpg'])
        self.assertEqual(listing.version, 2)

    def test_other_fields_rejected(self):
        listing = self.make_auction()
        with self.assertRaises(ValidationError) as ctx:
            update_listing(listing.pk, self.seller.pk, {'starting_price': Decimal('5')})
        self.assertEqual(ctx.exception.field, 'starting_price')

    def test_only_seller_can_edit(self):
        listing = self.make_auction()
        with self.assertRaises(Forbidden):
            update_listing(listing.pk, self.buyer.pk, {'description': 'mine now'})

    def test_bids_lock_prices(self):
        listing = self.make_auction()
        update_listing(listing.pk, self.seller.pk, {'buy_it_now_price': Decimal('60')})

        place_bid(listing.pk, self.buyer.pk, Decimal('20'))
        with self.assertRaises(InvalidState):
            update_listing(listing.pk, self.seller.pk, {'buy_it_now_price': Decimal('80')})

        # Descriptions stay editable
        update_listing(listing.pk, self.seller.pk, {'description': 'Still editable'})

    def test_offers_do_not_lock_edits(self):
        listing = self.make_fixed()
        create_offer(self.buyer.pk, listing.pk, Decimal('30'))

        updated = update_listing(listing.pk, self.seller.pk, {'description': 'Price firm'})
        self.assertEqual(updated.description, 'Price firm')

    def test_buy_it_now_only_on_auctions(self):
        listing = self.make_fixed()
        with self.assertRaises(ValidationError):
            update_listing(listing.pk, self.seller.pk, {'buy_it_now_price': Decimal('60')})


class CancelListingTest(BaseTestCase):
    """Test listing cancellation."""

    def test_cancel_auction_without_bids(self):
        listing = self.make_auction()
        cancelled, events = cancel_listing(listing.pk, self.seller.pk, Listing.CancelReason.SOLD_ELSEWHERE)

        self.assertEqual(cancelled.status, Listing.Status.CANCELLED)
        self.assertEqual(cancelled.cancel_reason, Listing.CancelReason.SOLD_ELSEWHERE)
        self.assertEqual(events, [])

    def test_cannot_cancel_auction_with_bids(self):
        listing = self.make_auction()
        place_bid(listing.pk, self.buyer.pk, Decimal('10'))

        with self.assertRaises(InvalidState):
            cancel_listing(listing.pk, self.seller.pk, Listing.CancelReason.CHANGED_MIND)
        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.ACTIVE)

    def test_cancel_fixed_price_rejects_offers(self):
        listing = self.make_fixed()
        offer, _ = create_offer(self.buyer.pk, listing.pk, Decimal('30'))

        _, events = cancel_listing(listing.pk, self.seller.pk, Listing.CancelReason.PRICE_TOO_LOW)

        offer.refresh_from_db()
        self.assertEqual(offer.status, Offer.Status.REJECTED)
        self.assertEqual([e.event_type for e in events], [Notification.EventType.OFFER_REJECTED])
        self.assertEqual(events[0].user_id, self.buyer.pk)

    def test_invalid_reason(self):
        listing = self.make_auction()
        with self.assertRaises(ValidationError):
            cancel_listing(listing.pk, self.seller.pk, 'bored')

    def test_only_seller_can_cancel(self):
        listing = self.make_auction()
        with self.assertRaises(Forbidden):
            cancel_listing(listing.pk, self.buyer.pk, Listing.CancelReason.OTHER)

    def test_cancelled_listing_cannot_be_cancelled_again(self):
        listing = self.make_auction()
        cancel_listing(listing.pk, self.seller.pk, Listing.CancelReason.OTHER)
        with self.assertRaises(InvalidState):
            cancel_listing(listing.pk, self.seller.pk, Listing.CancelReason.OTHER)


class SearchListingsTest(BaseTestCase):
    """Test browsing and lookups."""

    def setUp(self):
        super().setUp()
        self.cheap = self.make_auction(item_id='a', starting_price=Decimal('5'), duration_days=1)
        self.pricey = self.make_auction(
            item_id='b',
            starting_price=Decimal('100'),
            buy_it_now_price=Decimal('500'),
            duration_days=10,
        )
        self.fixed = self.make_fixed(item_id='c')

    def test_filters(self):
        auctions = search_listings({'listing_type': 'auction'})
        self.assertEqual({l.pk for l in auctions}, {self.cheap.pk, self.pricey.pk})

        with_bin = search_listings({'has_buy_it_now': True})
        self.assertEqual([l.pk for l in with_bin], [self.pricey.pk])

        in_range = search_listings({'min_price': '10', 'max_price': '50'})
        self.assertEqual([l.pk for l in in_range], [self.fixed.pk])

        ending_soon = search_listings({'ending_soon': True})
        self.assertEqual([l.pk for l in ending_soon], [self.cheap.pk])

    def test_sorts(self):
        self.assertEqual(
            [l.pk for l in search_listings(sort='price_low')],
            [self.cheap.pk, self.fixed.pk, self.pricey.pk]
        )
        self.assertEqual(
            [l.pk for l in search_listings(sort='ending_latest')],
            [self.fixed.pk, self.pricey.pk, self.cheap.pk]
        )

        place_bid(self.pricey.pk, self.buyer.pk, Decimal('100'))
        self.assertEqual(search_listings(sort='most_bids')[0].pk, self.pricey.pk)

    def test_unknown_sort(self):
        with self.assertRaises(ValidationError):
            search_listings(sort='random')

    def test_excludes_closed_listings(self):
        cancel_listing(self.cheap.pk, self.seller.pk, Listing.CancelReason.OTHER)
        pks = {l.pk for l in search_listings()}
        self.assertNotIn(self.cheap.pk, pks)

    def test_get_listing_for_viewer(self):
        add_to_watchlist(self.buyer.pk, self.pricey.pk)
        place_bid(self.pricey.pk, self.buyer.pk, Decimal('150'))

        listing = get_listing(self.pricey.pk, viewer_id=self.buyer.pk)
        self.assertTrue(listing.is_watching)
        self.assertEqual(listing.viewer_bid.max_bid, Decimal('150'))
        self.assertEqual(listing.minimum_next_bid, Decimal('102.50'))

        anonymous = get_listing(self.pricey.pk)
        self.assertFalse(anonymous.is_watching)
        self.assertIsNone(anonymous.viewer_bid)

    def test_get_missing_listing(self):
        with self.assertRaises(NotFound):
            get_listing('not-a-uuid')

    def test_seller_listings(self):
        self.assertEqual(len(get_seller_listings(self.seller.pk)), 3)
        self.assertEqual(len(get_seller_listings(self.seller.pk, status='active')), 3)
        self.assertEqual(get_seller_listings(self.buyer.pk), [])


class PurchaseTest(BaseTestCase):
    """Test fixed-price purchases, checkout and payment."""

    def test_purchase_fixed_price(self):
        listing = self.make_fixed(shipping_cost=Decimal('4.50'))
        offer, _ = create_offer(self.other.pk, listing.pk, Decimal('30'))

        sold, events = purchase_listing(listing.pk, self.buyer.pk)

        self.assertEqual(sold.status, Listing.Status.SOLD)
        self.assertEqual(sold.winner_id, self.buyer.pk)
        self.assertEqual(sold.winning_amount, Decimal('40'))
        self.assertEqual(sold.payment_status, Listing.PaymentStatus.PENDING)
        self.assertIsNotNone(sold.payment_deadline)
        self.assertEqual(checkout_amount(sold), Decimal('44.50'))

        offer.refresh_from_db()
        self.assertEqual(offer.status, Offer.Status.REJECTED)

        types = sorted(e.event_type for e in events)
        self.assertEqual(types, ['auction_sold', 'offer_rejected', 'won'])
        self.assertEqual([l.pk for l in get_won_listings(self.buyer.pk)], [listing.pk])

    def test_cannot_purchase_own_listing(self):
        listing = self.make_fixed()
        with self.assertRaises(Forbidden):
            purchase_listing(listing.pk, self.seller.pk)

    def test_cannot_purchase_auction(self):
        listing = self.make_auction()
        with self.assertRaises(InvalidState):
            purchase_listing(listing.pk, self.buyer.pk)

    def test_cannot_purchase_twice(self):
        listing = self.make_fixed()
        purchase_listing(listing.pk, self.buyer.pk)
        with self.assertRaises(InvalidState):
            purchase_listing(listing.pk, self.other.pk)

    def test_checkout_and_mark_paid(self):
        listing = self.make_fixed(shipping_cost=Decimal('5'))
        purchase_listing(listing.pk, self.buyer.pk)

        with self.assertRaises(Forbidden):
            start_checkout(listing.pk, self.other.pk)

        result = start_checkout(listing.pk, self.buyer.pk)
        self.assertEqual(result['amount'], Decimal('45'))
        self.assertTrue(result['intent']['reference'].startswith('manual_'))

        paid, events = mark_paid(listing.pk)
        self.assertEqual(paid.payment_status, Listing.PaymentStatus.PAID)
        self.assertIsNotNone(paid.paid_at)
        self.assertEqual(events[0].event_type, Notification.EventType.PAYMENT_RECEIVED)
        self.assertEqual(events[0].user_id, self.seller.pk)

        # Second callback is a no-op
        again, events = mark_paid(listing.pk)
        self.assertEqual(events, [])
        self.assertEqual(again.payment_status, Listing.PaymentStatus.PAID)
        self.assertEqual(
            Notification.objects.filter(event_type=Notification.EventType.PAYMENT_RECEIVED).count(),
            1
        )

    def test_mark_paid_requires_sale(self):
        listing = self.make_fixed()
        with self.assertRaises(InvalidState):
            mark_paid(listing.pk)


class WatchlistTest(BaseTestCase):
    """Test watchlists."""

    def test_add_is_idempotent(self):
        listing = self.make_auction()
        first = add_to_watchlist(self.buyer.pk, listing.pk)
        second = add_to_watchlist(self.buyer.pk, listing.pk)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(len(get_watchlist(self.buyer.pk)), 1)
        self.assertEqual(list(get_watchers(listing.pk)), [self.buyer])

    def test_remove_is_idempotent(self):
        listing = self.make_auction()
        add_to_watchlist(self.buyer.pk, listing.pk)

        remove_from_watchlist(self.buyer.pk, listing.pk)
        remove_from_watchlist(self.buyer.pk, listing.pk)
        self.assertEqual(get_watchlist(self.buyer.pk), [])

    def test_watch_missing_listing(self):
        with self.assertRaises(NotFound):
            add_to_watchlist(self.buyer.pk, '00000000-0000-0000-0000-000000000000')


class ReputationTest(BaseTestCase):
    """Test seller ratings and reputation bands."""

    def sold_listing(self, item_id='xmen-1'):
        listing = self.make_fixed(item_id=item_id)
        purchase_listing(listing.pk, self.buyer.pk)
        return listing

    def test_winner_rates_once(self):
        listing = self.sold_listing()
        rating = submit_seller_rating(self.buyer.pk, listing.pk, 'positive', 'Fast shipping')

        self.assertEqual(rating.seller_id, self.seller.pk)
        self.seller.refresh_from_db()
        self.assertEqual(self.seller.positive_ratings, 1)
        self.assertEqual(self.seller.negative_ratings, 0)

        with self.assertRaises(Conflict):
            submit_seller_rating(self.buyer.pk, listing.pk, 'negative')
        self.seller.refresh_from_db()
        self.assertEqual(self.seller.negative_ratings, 0)

        self.assertEqual(len(get_seller_ratings(self.seller.pk)), 1)

    def test_only_winner_can_rate(self):
        listing = self.sold_listing()
        with self.assertRaises(Forbidden):
            submit_seller_rating(self.other.pk, listing.pk, 'negative')

    def test_unsold_listing_cannot_be_rated(self):
        listing = self.make_fixed()
        with self.assertRaises(Forbidden):
            submit_seller_rating(self.buyer.pk, listing.pk, 'positive')

    def test_invalid_rating_type(self):
        listing = self.sold_listing()
        with self.assertRaises(ValidationError):
            submit_seller_rating(self.buyer.pk, listing.pk, 'meh')

    def test_reputation_bands(self):
        cases = [
            (0, 0, None, 'neutral'),
            (4, 1, 80, 'hero'),
            (1, 1, 50, 'neutral'),
            (1, 2, 33, 'villain'),
            (2, 1, 67, 'neutral'),
        ]
        for positive, negative, percentage, band in cases:
            User.objects.filter(pk=self.seller.pk).update(
                positive_ratings=positive,
                negative_ratings=negative,
            )
            profile = get_seller_profile(self.seller.pk)
            self.assertEqual(profile['positive_percentage'], percentage)
            self.assertEqual(profile['reputation'], band)
            self.assertEqual(seller_reputation(profile['seller']), band)

    def test_missing_seller(self):
        with self.assertRaises(NotFound):
            get_seller_profile(999999)
