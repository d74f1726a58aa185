"""
Tests for the lifecycle sweeps and notification delivery.

Tests cover:
- Closing ended auctions with and without bids
- Idempotent closing across repeated runs
- Opening scheduled auctions
- Eager offer expiry
- Fixed-price listing expiry and the one-time warning
- Delivery failures that never undo a close
- SMS delivery through Twilio
- The process_auctions management command

Run with: python manage.py test auctions.tests_lifecycle -v 2
"""

from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import patch

from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone

from . import notifications
from .engine import lifecycle
from .engine.bidding import place_bid
from .engine.listings import create_auction, create_fixed_price_listing
from .engine.offers import create_offer
from .engine.reputation import add_to_watchlist
from .engine.sales import sale_events
from .models import Listing, Notification, Offer, User


class FailingDispatcher:
    """Dispatcher that always fails, for delivery error tests."""

    def send(self, notification):
        raise ConnectionError('mail server unavailable')


class LifecycleTestBase(TestCase):
    """Base class with a seller, two bidders and a watcher."""

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
        self.watcher = User.objects.create_user(
            username='watcher',
            email='watcher@test.com',
            password='test123'
        )

    def make_auction(self, item_id='sm-1', **overrides):
        params = {
            'item_id': item_id,
            'title': 'Saga of the Swamp Thing #21',
            'starting_price': Decimal('10'),
            'duration_days': 1,
        }
        params.update(overrides)
        return create_auction(self.seller.pk, params)

    def make_fixed(self, item_id='fp-1'):
        return create_fixed_price_listing(self.seller.pk, {
            'item_id': item_id,
            'title': 'Giant-Size X-Men #1',
            'price': Decimal('40'),
            'accepts_offers': True,
        })

    def after_end(self, listing):
        return listing.end_time + timedelta(seconds=1)

    def events_for(self, user, event_type):
        return Notification.objects.filter(user=user, event_type=event_type)


class ProcessEndedAuctionsTest(LifecycleTestBase):
    """Test closing auctions past their end time."""

    def test_close_with_winner(self):
        listing = self.make_auction()
        add_to_watchlist(self.watcher.pk, listing.pk)
        place_bid(listing.pk, self.alice.pk, Decimal('20'))
        place_bid(listing.pk, self.bob.pk, Decimal('15'))
        now = self.after_end(listing)

        result = lifecycle.process_ended_auctions(now)

        self.assertEqual(result, {'processed': 1, 'skipped': 0, 'errors': []})
        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.SOLD)
        self.assertEqual(listing.winner_id, self.alice.pk)
        self.assertEqual(listing.winning_amount, Decimal('15.50'))
        self.assertEqual(listing.payment_status, Listing.PaymentStatus.PENDING)
        self.assertEqual(listing.payment_deadline, now + timedelta(hours=48))

        won = self.events_for(self.alice, Notification.EventType.WON).get()
        self.assertEqual(won.metadata['amount_due'], '15.50')
        self.assertIsNotNone(won.dispatched_at)
        self.assertEqual(self.events_for(self.seller, Notification.EventType.AUCTION_SOLD).count(), 1)
        self.assertEqual(self.events_for(self.watcher, Notification.EventType.ENDED).count(), 1)
        self.assertEqual(self.events_for(self.bob, Notification.EventType.ENDED).count(), 0)

        recipients = sorted(m.to[0] for m in mail.outbox)
        self.assertEqual(recipients, ['alice@test.com', 'seller@test.com', 'watcher@test.com'])

    def test_close_without_bids(self):
        listing = self.make_auction()

        result = lifecycle.process_ended_auctions(self.after_end(listing))

        self.assertEqual(result['processed'], 1)
        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.UNSOLD)
        self.assertIsNone(listing.winner_id)
        self.assertEqual(self.events_for(self.seller, Notification.EventType.ENDED).count(), 1)

    def test_running_auctions_untouched(self):
        listing = self.make_auction()
        result = lifecycle.process_ended_auctions(listing.end_time - timedelta(minutes=1))

        self.assertEqual(result['processed'], 0)
        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.ACTIVE)

    def test_running_twice_closes_once(self):
        listing = self.make_auction()
        place_bid(listing.pk, self.alice.pk, Decimal('20'))
        now = self.after_end(listing)

        lifecycle.process_ended_auctions(now)
        second = lifecycle.process_ended_auctions(now)

        self.assertEqual(second['processed'], 0)
        self.assertEqual(
            Notification.objects.filter(event_type=Notification.EventType.AUCTION_SOLD).count(),
            1
        )

    def test_closing_already_closed_auction_is_skipped(self):
        listing = self.make_auction()
        now = self.after_end(listing)
        lifecycle.process_ended_auctions(now)

        self.assertIsNone(lifecycle._close_auction(listing.pk, now))

    def test_failure_isolated_per_listing(self):
        first = self.make_auction('sm-1')
        second = self.make_auction('sm-2')
        Listing.objects.filter(pk=second.pk).update(end_time=first.end_time + timedelta(seconds=1))
        for listing in (first, second):
            place_bid(listing.pk, self.alice.pk, Decimal('20'))
        now = first.end_time + timedelta(minutes=1)

        calls = []

        def flaky(listing):
            calls.append(listing.pk)
            if len(calls) == 1:
                raise RuntimeError('boom')
            return sale_events(listing)

        with patch('auctions.engine.lifecycle.sale_events', side_effect=flaky):
            result = lifecycle.process_ended_auctions(now)

        self.assertEqual(result['processed'], 1)
        self.assertEqual(len(result['errors']), 1)
        self.assertIn('boom', result['errors'][0])

        first.refresh_from_db()
        second.refresh_from_db()
        self.assertEqual(first.status, Listing.Status.ACTIVE)
        self.assertEqual(second.status, Listing.Status.SOLD)

        # The failed listing is picked up by the next run
        retry = lifecycle.process_ended_auctions(now)
        self.assertEqual(retry['processed'], 1)
        first.refresh_from_db()
        self.assertEqual(first.status, Listing.Status.SOLD)

    @override_settings(AUCTIONS_NOTIFICATION_DISPATCHER='auctions.tests_lifecycle.FailingDispatcher')
    def test_delivery_failure_keeps_close(self):
        listing = self.make_auction()
        place_bid(listing.pk, self.alice.pk, Decimal('20'))

        result = lifecycle.process_ended_auctions(self.after_end(listing))

        self.assertEqual(result['processed'], 1)
        self.assertEqual(len(result['errors']), 2)
        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.SOLD)

        won = self.events_for(self.alice, Notification.EventType.WON).get()
        self.assertIsNone(won.dispatched_at)
        self.assertEqual(won.attempts, 1)
        self.assertIn('mail server unavailable', won.last_error)


class NotificationDeliveryTest(LifecycleTestBase):
    """Test the outbox retry and read tracking."""

    def test_dispatch_pending_retries_failures(self):
        event = notifications.queue(self.alice.pk, Notification.EventType.OUTBID, current_price=Decimal('12'))
        errors = notifications.dispatch([event], dispatcher=FailingDispatcher())
        self.assertEqual(len(errors), 1)

        self.assertEqual(notifications.dispatch_pending(), [])
        event.refresh_from_db()
        self.assertIsNotNone(event.dispatched_at)
        self.assertEqual(event.attempts, 2)
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('$12', mail.outbox[0].body)

    @override_settings(AUCTIONS_MAX_DISPATCH_ATTEMPTS=1)
    def test_gives_up_after_max_attempts(self):
        event = notifications.queue(self.alice.pk, Notification.EventType.OUTBID)
        notifications.dispatch([event], dispatcher=FailingDispatcher())

        notifications.dispatch_pending()
        event.refresh_from_db()
        self.assertIsNone(event.dispatched_at)
        self.assertEqual(mail.outbox, [])

    def test_dispatch_at_most_once(self):
        event = notifications.queue(self.alice.pk, Notification.EventType.OUTBID)
        notifications.dispatch([event])
        notifications.dispatch([event])

        self.assertEqual(len(mail.outbox), 1)

    def test_mark_read(self):
        first = notifications.queue(self.alice.pk, Notification.EventType.OUTBID)
        notifications.queue(self.alice.pk, Notification.EventType.WON)

        self.assertEqual(notifications.mark_read(self.alice.pk, [first.pk]), 1)
        self.assertEqual(notifications.mark_read(self.alice.pk), 1)
        self.assertFalse(Notification.objects.filter(is_read=False).exists())


@override_settings(
    AUCTIONS_NOTIFICATION_DISPATCHER='auctions.notifications.SmsDispatcher',
    TWILIO_ACCOUNT_SID='AC-test',
    TWILIO_AUTH_TOKEN='secret',
    TWILIO_FROM_NUMBER='+15005550006',
)
@patch('auctions.services.twilio_service.Client')
class SmsDispatcherTest(LifecycleTestBase):
    """Test delivery by text message."""

    def setUp(self):
        super().setUp()
        self.alice.phone_number = '(650) 253-0000'
        self.alice.save()

    def test_sends_to_e164_number(self, client_class):
        client_class.return_value.messages.create.return_value.sid = 'SM-1'
        event = notifications.queue(self.alice.pk, Notification.EventType.OUTBID, current_price=Decimal('12'))

        self.assertEqual(notifications.dispatch([event]), [])

        client_class.assert_called_once_with('AC-test', 'secret')
        kwargs = client_class.return_value.messages.create.call_args.kwargs
        self.assertEqual(kwargs['to'], '+16502530000')
        self.assertEqual(kwargs['from_'], '+15005550006')
        self.assertTrue(kwargs['body'].startswith("You've been outbid!"))
        event.refresh_from_db()
        self.assertIsNotNone(event.dispatched_at)
        self.assertEqual(mail.outbox, [])

    def test_user_without_phone_is_skipped(self, client_class):
        event = notifications.queue(self.bob.pk, Notification.EventType.OUTBID)

        self.assertEqual(notifications.dispatch([event]), [])
        client_class.assert_not_called()
        event.refresh_from_db()
        self.assertIsNotNone(event.dispatched_at)

    def test_invalid_number_is_left_for_retry(self, client_class):
        self.alice.phone_number = '12345'
        self.alice.save()
        event = notifications.queue(self.alice.pk, Notification.EventType.WON)

        errors = notifications.dispatch([event])

        self.assertEqual(len(errors), 1)
        client_class.return_value.messages.create.assert_not_called()
        event.refresh_from_db()
        self.assertIsNone(event.dispatched_at)
        self.assertEqual(event.attempts, 1)
        self.assertIn('12345', event.last_error)

    @override_settings(TWILIO_AUTH_TOKEN=None)
    def test_missing_credentials(self, client_class):
        event = notifications.queue(self.alice.pk, Notification.EventType.WON)

        errors = notifications.dispatch([event])

        self.assertEqual(len(errors), 1)
        client_class.assert_not_called()
        event.refresh_from_db()
        self.assertIn('TWILIO_AUTH_TOKEN', event.last_error)

class ActivateScheduledTest(LifecycleTestBase):
    """Test opening scheduled auctions."""

    def test_activate_when_due(self):
        start = timezone.now() + timedelta(hours=2)
        listing = self.make_auction(start_time=start)

        self.assertEqual(lifecycle.activate_scheduled_listings(start - timedelta(minutes=1)), 0)
        self.assertEqual(lifecycle.activate_scheduled_listings(start), 1)
        self.assertEqual(lifecycle.activate_scheduled_listings(start), 0)

        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.ACTIVE)


class ExpireOffersTest(LifecycleTestBase):
    """Test eager offer expiry."""

    def test_expire_due_offers(self):
        listing = self.make_fixed()
        offer, _ = create_offer(self.alice.pk, listing.pk, Decimal('30'))
        fresh, _ = create_offer(self.bob.pk, listing.pk, Decimal('32'))
        Offer.objects.filter(pk=fresh.pk).update(expires_at=offer.expires_at + timedelta(days=1))

        self.assertEqual(lifecycle.expire_offers(offer.expires_at - timedelta(minutes=1))['expired'], 0)

        result = lifecycle.expire_offers(offer.expires_at + timedelta(seconds=1))

        self.assertEqual(result, {'expired': 1, 'errors': []})
        offer.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(offer.status, Offer.Status.EXPIRED)
        self.assertEqual(fresh.status, Offer.Status.PENDING)
        self.assertEqual(self.events_for(self.alice, Notification.EventType.OFFER_EXPIRED).count(), 1)


class ExpireListingsTest(LifecycleTestBase):
    """Test fixed-price listing expiry."""

    def test_warning_sent_once(self):
        listing = self.make_fixed()
        now = listing.end_time - timedelta(hours=12)

        self.assertEqual(lifecycle.expire_listings(now)['warned'], 1)
        self.assertEqual(lifecycle.expire_listings(now + timedelta(hours=1))['warned'], 0)
        self.assertEqual(
            self.events_for(self.seller, Notification.EventType.LISTING_EXPIRING).count(),
            1
        )

    def test_no_warning_for_distant_end(self):
        listing = self.make_fixed()
        result = lifecycle.expire_listings(listing.end_time - timedelta(days=3))
        self.assertEqual(result['warned'], 0)

    def test_expire_listing_with_offers(self):
        listing = self.make_fixed()
        offer, _ = create_offer(self.alice.pk, listing.pk, Decimal('30'))
        Offer.objects.filter(pk=offer.pk).update(expires_at=listing.end_time + timedelta(days=1))

        result = lifecycle.expire_listings(self.after_end(listing))

        self.assertEqual(result['expired'], 1)
        listing.refresh_from_db()
        offer.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.UNSOLD)
        self.assertEqual(offer.status, Offer.Status.REJECTED)
        self.assertEqual(self.events_for(self.seller, Notification.EventType.LISTING_EXPIRED).count(), 1)
        self.assertEqual(self.events_for(self.alice, Notification.EventType.OFFER_REJECTED).count(), 1)

    def test_auctions_not_expired_here(self):
        listing = self.make_auction()
        result = lifecycle.expire_listings(self.after_end(listing))

        self.assertEqual(result['expired'], 0)
        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.ACTIVE)


class RunLifecycleTest(LifecycleTestBase):
    """Test the combined sweep and its command."""

    def test_run_lifecycle_summary(self):
        auction = self.make_auction()
        place_bid(auction.pk, self.alice.pk, Decimal('20'))
        scheduled = self.make_auction('sm-2', start_time=timezone.now() + timedelta(hours=1))

        result = lifecycle.run_lifecycle(self.after_end(auction))

        self.assertEqual(result['activated'], 1)
        self.assertEqual(result['processed'], 1)
        self.assertEqual(result['errors'], [])
        scheduled.refresh_from_db()
        self.assertEqual(scheduled.status, Listing.Status.ACTIVE)

    def test_process_auctions_command(self):
        listing = self.make_auction()
        place_bid(listing.pk, self.alice.pk, Decimal('20'))
        Listing.objects.filter(pk=listing.pk).update(end_time=timezone.now() - timedelta(minutes=1))

        out = StringIO()
        call_command('process_auctions', stdout=out)

        self.assertIn('closed 1', out.getvalue())
        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.SOLD)
