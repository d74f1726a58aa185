"""
Tests for the proxy bidding engine.

Tests cover:
- Proxy price resolution between competing maximums
- Tie-breaking in favour of the earlier bid
- Leaders raising their own maximum
- Buy-It-Now through bids and directly
- Bid history anonymity
- Scheduled auctions opening on first bid
- Stale listing writes and conditional status moves

Run with: python manage.py test auctions.tests_bidding -v 2
"""

from datetime import timedelta
from decimal import Decimal

from django.db.models import F
from django.test import TestCase
from django.utils import timezone

from .engine.bidding import buy_it_now, get_bid_history, get_user_bids, place_bid
from .engine.listings import create_auction
from .engine.locking import save_listing, transition_status
from .engine.reputation import add_to_watchlist
from .exceptions import (
    AccountSuspended,
    BidTooLow,
    ConcurrentModification,
    Forbidden,
    InvalidState,
    NotFound,
    ValidationError,
)
from .models import Bid, Listing, Notification, User


class BiddingTestBase(TestCase):
    """Base class for bidding tests with three bidders and a $10 auction."""

    def setUp(self):
        self.seller = User.objects.create_user(
            username='seller',
            email='seller@test.com',
            password='test123'
        )
        self.alice = User.objects.create_user(
            username='alice',
            email='alice@test.com',
            password='test123'
        )
        self.bob = User.objects.create_user(
            username='bob',
            email='bob@test.com',
            password='test123'
        )
        self.carol = User.objects.create_user(
            username='carol',
            email='carol@test.com',
            password='test123'
        )
        self.listing = self.make_auction()

    def make_auction(self, **overrides):
        params = {
            'item_id': 'tec-27',
            'title': 'Detective Comics #27 (facsimile)',
            'starting_price': Decimal('10'),
            'duration_days': 7,
        }
        params.update(overrides)
        return create_auction(self.seller.pk, params)

    def bid(self, user, amount, **kwargs):
        return place_bid(self.listing.pk, user.pk, Decimal(amount), **kwargs)

    def refresh(self):
        self.listing.refresh_from_db()
        return self.listing

    def outbid_notices(self, user):
        return Notification.objects.filter(
            user=user,
            event_type=Notification.EventType.OUTBID,
        ).count()


class ProxyResolutionTest(BiddingTestBase):
    """Test how competing maximums set the visible price."""

    def test_three_bidder_scenario(self):
        """Price follows the runner-up plus one increment, capped at the leader's max."""
        outcome = self.bid(self.alice, '20')
        self.assertTrue(outcome['accepted'])
        self.assertTrue(outcome['is_high_bidder'])
        self.assertEqual(outcome['current_price'], Decimal('10'))
        self.assertEqual(outcome['minimum_next_bid'], Decimal('10.50'))

        outcome = self.bid(self.bob, '15')
        self.assertTrue(outcome['accepted'])
        self.assertFalse(outcome['is_high_bidder'])
        self.assertEqual(outcome['current_price'], Decimal('15.50'))
        self.assertEqual(outcome['message'], "You have been outbid by another bidder's maximum.")
        self.assertEqual(self.outbid_notices(self.alice), 0)

        outcome = self.bid(self.carol, '25')
        self.assertTrue(outcome['is_high_bidder'])
        self.assertEqual(outcome['current_price'], Decimal('20.50'))

        listing = self.refresh()
        self.assertEqual(listing.high_bidder_id, self.carol.pk)
        self.assertEqual(listing.current_price, Decimal('20.50'))
        self.assertEqual(listing.bid_count, 3)
        self.assertEqual(listing.version, 4)
        self.assertEqual(self.outbid_notices(self.alice), 1)
        self.assertEqual(self.outbid_notices(self.bob), 0)

    def test_equal_maximums_go_to_earlier_bid(self):
        self.bid(self.alice, '20')
        outcome = self.bid(self.bob, '20')

        self.assertFalse(outcome['is_high_bidder'])
        listing = self.refresh()
        self.assertEqual(listing.high_bidder_id, self.alice.pk)
        self.assertEqual(listing.current_price, Decimal('20'))

    def test_new_leader_pays_one_increment_over_old_max(self):
        self.bid(self.alice, '20')
        self.bid(self.bob, '100')

        listing = self.refresh()
        self.assertEqual(listing.high_bidder_id, self.bob.pk)
        self.assertEqual(listing.current_price, Decimal('20.50'))

    def test_price_never_decreases(self):
        prices = []
        for user, amount in [(self.alice, '12'), (self.bob, '30'), (self.carol, '14'),
                             (self.alice, '40'), (self.carol, '45'), (self.bob, '41')]:
            try:
                self.bid(user, amount)
            except BidTooLow:
                pass
            prices.append(self.refresh().current_price)

        self.assertEqual(prices, sorted(prices))
        self.assertLessEqual(self.listing.current_price, Decimal('45'))

    def test_bid_log_sequences(self):
        self.bid(self.alice, '20')
        self.bid(self.bob, '15')
        self.bid(self.carol, '25')

        bids = list(Bid.objects.filter(listing=self.listing).order_by('sequence'))
        self.assertEqual([b.sequence for b in bids], [1, 2, 3])
        self.assertEqual([b.price_after for b in bids], [Decimal('10'), Decimal('15.50'), Decimal('20.50')])


class BidValidationTest(BiddingTestBase):
    """Test bids that are refused."""

    def test_first_bid_below_starting_price(self):
        with self.assertRaises(BidTooLow) as ctx:
            self.bid(self.alice, '9')
        self.assertEqual(ctx.exception.minimum_bid, Decimal('10'))

    def test_bid_below_minimum_next_bid(self):
        self.bid(self.alice, '20')
        with self.assertRaises(BidTooLow) as ctx:
            self.bid(self.bob, '10')
        self.assertEqual(ctx.exception.minimum_bid, Decimal('10.50'))
        self.assertEqual(ctx.exception.as_dict()['minimum_bid'], '10.50')
        self.assertEqual(self.refresh().bid_count, 1)

    def test_fractional_max_bid(self):
        with self.assertRaises(ValidationError):
            self.bid(self.alice, '20.50')

    def test_seller_cannot_bid(self):
        with self.assertRaises(Forbidden):
            self.bid(self.seller, '20')

    def test_suspended_bidder(self):
        self.alice.is_suspended = True
        self.alice.save()

        with self.assertRaises(AccountSuspended):
            self.bid(self.alice, '20')
        self.assertFalse(Bid.objects.exists())

    def test_bid_after_end_time(self):
        with self.assertRaises(InvalidState):
            self.bid(self.alice, '20', now=self.listing.end_time + timedelta(seconds=1))

    def test_bid_on_missing_listing(self):
        with self.assertRaises(NotFound):
            place_bid('00000000-0000-0000-0000-000000000000', self.alice.pk, Decimal('20'))


class RaiseOwnMaximumTest(BiddingTestBase):
    """Test the leader bidding again."""

    def test_raise_keeps_price(self):
        self.bid(self.alice, '20')
        outcome = self.bid(self.alice, '30')

        self.assertTrue(outcome['accepted'])
        self.assertEqual(outcome['message'], "Your maximum bid has been raised.")
        listing = self.refresh()
        self.assertEqual(listing.current_price, Decimal('10'))
        self.assertEqual(listing.high_bidder_id, self.alice.pk)
        self.assertEqual(listing.bid_count, 2)

        # The raised maximum defends against the next challenger
        self.bid(self.bob, '25')
        listing = self.refresh()
        self.assertEqual(listing.high_bidder_id, self.alice.pk)
        self.assertEqual(listing.current_price, Decimal('26'))

    def test_lower_or_equal_max_is_noop(self):
        self.bid(self.alice, '20')
        outcome = self.bid(self.alice, '15')

        self.assertFalse(outcome['accepted'])
        self.assertIsNone(outcome['bid'])
        self.assertTrue(outcome['is_high_bidder'])
        self.assertEqual(outcome['message'], "You are already the high bidder.")
        self.assertEqual(self.refresh().bid_count, 1)
        self.assertEqual(self.listing.version, 2)

    def test_bidder_number_is_stable(self):
        self.bid(self.alice, '20')
        self.bid(self.bob, '15')
        self.bid(self.bob, '30')

        numbers = list(
            Bid.objects.filter(listing=self.listing).order_by('sequence').values_list('bidder_number', flat=True)
        )
        self.assertEqual(numbers, [1, 2, 2])


class BuyItNowTest(BiddingTestBase):
    """Test Buy-It-Now."""

    def setUp(self):
        super().setUp()
        self.listing = self.make_auction(item_id='bin-1', buy_it_now_price=Decimal('50'))

    def assert_sold_to(self, user, amount):
        listing = self.refresh()
        self.assertEqual(listing.status, Listing.Status.SOLD)
        self.assertEqual(listing.winner_id, user.pk)
        self.assertEqual(listing.winning_amount, Decimal(amount))
        self.assertEqual(listing.current_price, Decimal(amount))
        self.assertEqual(listing.payment_status, Listing.PaymentStatus.PENDING)
        self.assertIsNotNone(listing.payment_deadline)
        return listing

    def test_max_bid_at_buy_it_now_price(self):
        outcome = self.bid(self.alice, '50')

        self.assertEqual(outcome['message'], "You bought this item with Buy-It-Now!")
        self.assertIsNone(outcome['minimum_next_bid'])
        self.assert_sold_to(self.alice, '50')

        types = sorted(e.event_type for e in outcome['events'])
        self.assertEqual(types, ['auction_sold', 'won'])

    def test_challenger_reaches_buy_it_now(self):
        self.bid(self.alice, '20')
        outcome = self.bid(self.bob, '60')

        self.assert_sold_to(self.bob, '50')
        types = sorted(e.event_type for e in outcome['events'])
        self.assertEqual(types, ['auction_sold', 'outbid', 'won'])

    def test_proxy_price_landing_on_buy_it_now(self):
        # One increment over $49 resolves to exactly $50
        self.bid(self.alice, '49')
        self.assertEqual(self.refresh().current_price, Decimal('10'))

        outcome = self.bid(self.bob, '100')

        self.assertEqual(outcome['message'], "You bought this item with Buy-It-Now!")
        self.assertIsNone(outcome['minimum_next_bid'])
        self.assert_sold_to(self.bob, '50')
        types = sorted(e.event_type for e in outcome['events'])
        self.assertEqual(types, ['auction_sold', 'outbid', 'won'])

    def test_no_more_bids_after_sale(self):
        self.bid(self.alice, '50')
        with self.assertRaises(InvalidState):
            self.bid(self.bob, '100')

    def test_buy_it_now_directly(self):
        self.bid(self.alice, '20')
        listing, events = buy_it_now(self.listing.pk, self.bob.pk)

        self.assert_sold_to(self.bob, '50')
        self.assertEqual(listing.bid_count, 1)
        self.assertEqual(Bid.objects.filter(listing=self.listing).count(), 1)
        self.assertIn(Notification.EventType.OUTBID, [e.event_type for e in events])

    def test_seller_cannot_buy_it_now(self):
        with self.assertRaises(Forbidden):
            buy_it_now(self.listing.pk, self.seller.pk)

    def test_without_buy_it_now_price(self):
        plain = self.make_auction(item_id='plain')
        with self.assertRaises(InvalidState):
            buy_it_now(plain.pk, self.alice.pk)

    def test_watchers_told_of_sale(self):
        add_to_watchlist(self.carol.pk, self.listing.pk)
        add_to_watchlist(self.alice.pk, self.listing.pk)
        self.bid(self.alice, '50')

        ended = Notification.objects.filter(event_type=Notification.EventType.ENDED)
        self.assertEqual([n.user_id for n in ended], [self.carol.pk])


class BidHistoryTest(BiddingTestBase):
    """Test the anonymous bid history."""

    def setUp(self):
        super().setUp()
        self.bid(self.alice, '20')
        self.bid(self.bob, '15')

    def test_bidders_are_anonymous(self):
        history = get_bid_history(self.listing.pk)

        self.assertEqual([h['bidder'] for h in history], ['Bidder 1', 'Bidder 2'])
        self.assertEqual([h['max_bid'] for h in history], [None, None])
        self.assertEqual([h['price_after'] for h in history], [Decimal('10'), Decimal('15.50')])

    def test_bidder_sees_own_entries(self):
        history = get_bid_history(self.listing.pk, viewer_id=self.bob.pk)

        self.assertEqual(history[0]['bidder'], 'Bidder 1')
        self.assertFalse(history[0]['is_own'])
        self.assertEqual(history[1]['bidder'], 'bob')
        self.assertTrue(history[1]['is_own'])
        self.assertEqual(history[1]['max_bid'], Decimal('15'))

    def test_platform_sees_everyone(self):
        history = get_bid_history(self.listing.pk, is_platform=True)

        self.assertEqual([h['bidder'] for h in history], ['alice', 'bob'])
        self.assertEqual(history[0]['max_bid'], Decimal('20'))

    def test_missing_listing(self):
        with self.assertRaises(NotFound):
            get_bid_history('not-a-uuid')

    def test_user_bids(self):
        self.bid(self.bob, '30')
        bids = get_user_bids(self.bob.pk)

        self.assertEqual(len(bids), 1)
        self.assertEqual(bids[0].max_bid, Decimal('30'))


class ScheduledAuctionTest(BiddingTestBase):
    """Test auctions with a future start time."""

    def setUp(self):
        super().setUp()
        self.start = timezone.now() + timedelta(hours=1)
        self.listing = self.make_auction(item_id='sched-1', start_time=self.start)

    def test_bid_before_start(self):
        with self.assertRaises(InvalidState):
            self.bid(self.alice, '20', now=self.start - timedelta(minutes=1))
        self.assertEqual(self.refresh().status, Listing.Status.SCHEDULED)

    def test_first_bid_after_start_opens_auction(self):
        outcome = self.bid(self.alice, '20', now=self.start + timedelta(minutes=1))

        self.assertTrue(outcome['accepted'])
        listing = self.refresh()
        self.assertEqual(listing.status, Listing.Status.ACTIVE)
        self.assertEqual(listing.high_bidder_id, self.alice.pk)


class ListingWriteGuardTest(BiddingTestBase):
    """Test the version check and conditional status moves on listing writes."""

    def test_stale_write_is_rejected(self):
        stale = Listing.objects.get(pk=self.listing.pk)
        version = stale.version

        # Another writer commits first
        Listing.objects.filter(pk=self.listing.pk).update(version=F('version') + 1)

        stale.current_price = Decimal('25')
        stale.high_bidder_id = self.alice.pk
        with self.assertRaises(ConcurrentModification) as ctx:
            save_listing(stale, ['current_price', 'high_bidder'])

        self.assertEqual(ctx.exception.listing_id, self.listing.pk)
        listing = self.refresh()
        self.assertEqual(listing.current_price, Decimal('10'))
        self.assertIsNone(listing.high_bidder_id)
        self.assertEqual(listing.version, version + 1)

    def test_fresh_write_bumps_version(self):
        listing = Listing.objects.get(pk=self.listing.pk)
        version = listing.version

        listing.title = 'Detective Comics #27 (reprint)'
        save_listing(listing, ['title'])

        self.assertEqual(listing.version, version + 1)
        self.assertEqual(self.refresh().title, 'Detective Comics #27 (reprint)')
        self.assertEqual(self.listing.version, version + 1)

    def test_status_move_from_wrong_status(self):
        version = self.listing.version

        moved = transition_status(self.listing.pk, [Listing.Status.SCHEDULED], Listing.Status.ACTIVE)

        self.assertFalse(moved)
        listing = self.refresh()
        self.assertEqual(listing.status, Listing.Status.ACTIVE)
        self.assertEqual(listing.version, version)

    def test_status_move_with_unmet_condition(self):
        version = self.listing.version

        moved = transition_status(
            self.listing.pk,
            [Listing.Status.ACTIVE],
            Listing.Status.ENDED,
            listing_type=Listing.ListingType.FIXED_PRICE,
        )

        self.assertFalse(moved)
        listing = self.refresh()
        self.assertEqual(listing.status, Listing.Status.ACTIVE)
        self.assertEqual(listing.version, version)

    def test_second_closer_loses(self):
        first = transition_status(self.listing.pk, [Listing.Status.ACTIVE], Listing.Status.ENDED)
        second = transition_status(self.listing.pk, [Listing.Status.ACTIVE], Listing.Status.ENDED)

        self.assertTrue(first)
        self.assertFalse(second)
        self.assertEqual(self.refresh().status, Listing.Status.ENDED)
