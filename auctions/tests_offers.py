"""
Tests for offer negotiation on fixed-price listings.

Tests cover:
- Offer ranges and one open offer per buyer
- Seller accept, reject and counter
- Buyer answers to counter-offers
- Lazy expiry when an offer is read or answered

Run with: python manage.py test auctions.tests_offers -v 2
"""

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from .engine.listings import create_auction, create_fixed_price_listing
from .engine.offers import (
    create_offer,
    get_buyer_offers,
    get_offers_for_listing,
    respond_to_counter_offer,
    respond_to_offer,
)
from .exceptions import Forbidden, InvalidState, OneActiveOfferPerBuyer, ValidationError
from .models import Listing, Notification, Offer, User


class OfferTestBase(TestCase):
    """Base class with a $40 fixed-price listing taking offers from $25."""

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
        self.rival = User.objects.create_user(
            username='rival',
            email='rival@test.com',
            password='test123'
        )
        self.listing = create_fixed_price_listing(self.seller.pk, {
            'item_id': 'ff-1',
            'title': 'Fantastic Four #1',
            'price': Decimal('40'),
            'accepts_offers': True,
            'min_offer_amount': Decimal('25'),
        })

    def offer(self, user, amount):
        offer, _ = create_offer(user.pk, self.listing.pk, Decimal(amount))
        return offer

    def backdate(self, offer):
        Offer.objects.filter(pk=offer.pk).update(expires_at=timezone.now() - timedelta(minutes=1))

    def notices(self, user, event_type):
        return Notification.objects.filter(user=user, event_type=event_type).count()


class CreateOfferTest(OfferTestBase):
    """Test making offers."""

    def test_negotiation_scenario(self):
        """Too low, then pending, countered and finally rejected by the buyer."""
        with self.assertRaises(ValidationError) as ctx:
            self.offer(self.buyer, '20')
        self.assertEqual(ctx.exception.field, 'amount')

        offer = self.offer(self.buyer, '30')
        self.assertEqual(offer.status, Offer.Status.PENDING)
        self.assertEqual(self.notices(self.seller, Notification.EventType.OFFER_RECEIVED), 1)

        offer, _ = respond_to_offer(self.seller.pk, offer.pk, 'counter', Decimal('35'))
        self.assertEqual(offer.status, Offer.Status.COUNTERED)
        self.assertEqual(offer.counter_amount, Decimal('35'))
        self.assertEqual(self.notices(self.buyer, Notification.EventType.OFFER_COUNTERED), 1)

        offer, events = respond_to_counter_offer(self.buyer.pk, offer.pk, 'reject')
        self.assertEqual(offer.status, Offer.Status.REJECTED)
        self.assertEqual(
            [(e.user_id, e.event_type) for e in events],
            [(self.seller.pk, Notification.EventType.COUNTER_REJECTED)]
        )
        self.assertEqual(events[0].metadata['counter_amount'], '35.00')

        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, Listing.Status.ACTIVE)

    def test_offer_must_be_below_price(self):
        with self.assertRaises(ValidationError):
            self.offer(self.buyer, '40')

    def test_one_open_offer_per_buyer(self):
        first = self.offer(self.buyer, '30')
        with self.assertRaises(OneActiveOfferPerBuyer) as ctx:
            self.offer(self.buyer, '32')
        self.assertEqual(ctx.exception.offer.pk, first.pk)
        self.assertEqual(ctx.exception.as_dict()['offer_id'], str(first.pk))

        # Other buyers are unaffected
        self.offer(self.rival, '28')

    def test_new_offer_after_rejection(self):
        first = self.offer(self.buyer, '30')
        respond_to_offer(self.seller.pk, first.pk, 'reject')

        second = self.offer(self.buyer, '33')
        self.assertEqual(second.status, Offer.Status.PENDING)

    def test_seller_cannot_offer(self):
        with self.assertRaises(Forbidden):
            self.offer(self.seller, '30')

    def test_listing_without_offers(self):
        plain = create_fixed_price_listing(self.seller.pk, {
            'item_id': 'hulk-181',
            'price': Decimal('40'),
        })
        with self.assertRaises(InvalidState):
            create_offer(self.buyer.pk, plain.pk, Decimal('30'))

    def test_auctions_do_not_take_offers(self):
        auction = create_auction(self.seller.pk, {
            'item_id': 'ac-1',
            'starting_price': Decimal('10'),
            'duration_days': 3,
        })
        with self.assertRaises(InvalidState):
            create_offer(self.buyer.pk, auction.pk, Decimal('30'))


class RespondToOfferTest(OfferTestBase):
    """Test seller responses."""

    def test_accept_sells_listing(self):
        offer = self.offer(self.buyer, '30')
        rival_offer = self.offer(self.rival, '27')

        offer, events = respond_to_offer(self.seller.pk, offer.pk, 'accept')

        self.assertEqual(offer.status, Offer.Status.ACCEPTED)
        self.assertEqual(offer.accepted_amount, Decimal('30'))
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, Listing.Status.SOLD)
        self.assertEqual(self.listing.winner_id, self.buyer.pk)
        self.assertEqual(self.listing.winning_amount, Decimal('30'))
        self.assertEqual(self.listing.payment_status, Listing.PaymentStatus.PENDING)

        rival_offer.refresh_from_db()
        self.assertEqual(rival_offer.status, Offer.Status.REJECTED)

        accepted = [e for e in events if e.event_type == Notification.EventType.OFFER_ACCEPTED]
        self.assertEqual(accepted[0].user_id, self.buyer.pk)
        self.assertEqual(accepted[0].metadata['amount_due'], '30.00')

    def test_reject(self):
        offer = self.offer(self.buyer, '30')
        offer, _ = respond_to_offer(self.seller.pk, offer.pk, 'reject')

        self.assertEqual(offer.status, Offer.Status.REJECTED)
        self.assertIsNotNone(offer.responded_at)
        self.assertEqual(self.notices(self.buyer, Notification.EventType.OFFER_REJECTED), 1)

    def test_counter_range(self):
        offer = self.offer(self.buyer, '30')
        for amount in ['30', '40', '45']:
            with self.assertRaises(ValidationError, msg=amount):
                respond_to_offer(self.seller.pk, offer.pk, 'counter', Decimal(amount))
        with self.assertRaises(ValidationError):
            respond_to_offer(self.seller.pk, offer.pk, 'counter')

        offer.refresh_from_db()
        self.assertEqual(offer.status, Offer.Status.PENDING)

    def test_counter_resets_expiry(self):
        offer = self.offer(self.buyer, '30')
        original_expiry = offer.expires_at

        offer, _ = respond_to_offer(self.seller.pk, offer.pk, 'counter', Decimal('35'))
        self.assertGreaterEqual(offer.expires_at, original_expiry)
        self.assertEqual(offer.version, 2)

    def test_only_seller_responds(self):
        offer = self.offer(self.buyer, '30')
        with self.assertRaises(Forbidden):
            respond_to_offer(self.rival.pk, offer.pk, 'accept')

    def test_seller_cannot_answer_countered_offer(self):
        offer = self.offer(self.buyer, '30')
        respond_to_offer(self.seller.pk, offer.pk, 'counter', Decimal('35'))

        with self.assertRaises(InvalidState):
            respond_to_offer(self.seller.pk, offer.pk, 'accept')

    def test_unknown_action(self):
        offer = self.offer(self.buyer, '30')
        with self.assertRaises(ValidationError):
            respond_to_offer(self.seller.pk, offer.pk, 'maybe')

    def test_offers_visible_to_seller_only(self):
        self.offer(self.buyer, '30')
        self.offer(self.rival, '26')

        self.assertEqual(len(get_offers_for_listing(self.listing.pk, self.seller.pk)), 2)
        with self.assertRaises(Forbidden):
            get_offers_for_listing(self.listing.pk, self.buyer.pk)


class CounterOfferTest(OfferTestBase):
    """Test buyer answers to counter-offers."""

    def setUp(self):
        super().setUp()
        offer = self.offer(self.buyer, '30')
        self.offer_obj, _ = respond_to_offer(self.seller.pk, offer.pk, 'counter', Decimal('35'))

    def test_accept_counter(self):
        offer, events = respond_to_counter_offer(self.buyer.pk, self.offer_obj.pk, 'accept')

        self.assertEqual(offer.status, Offer.Status.ACCEPTED)
        self.assertEqual(offer.accepted_amount, Decimal('35'))
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, Listing.Status.SOLD)
        self.assertEqual(self.listing.winning_amount, Decimal('35'))
        self.assertEqual(
            [e.event_type for e in events if e.user_id == self.seller.pk],
            [Notification.EventType.AUCTION_SOLD]
        )

    def test_only_buyer_answers(self):
        with self.assertRaises(Forbidden):
            respond_to_counter_offer(self.rival.pk, self.offer_obj.pk, 'accept')

    def test_counter_action_not_allowed(self):
        with self.assertRaises(ValidationError):
            respond_to_counter_offer(self.buyer.pk, self.offer_obj.pk, 'counter')

    def test_pending_offer_has_no_counter(self):
        pending = self.offer(self.rival, '28')
        with self.assertRaises(InvalidState):
            respond_to_counter_offer(self.rival.pk, pending.pk, 'accept')

    def test_counter_blocks_new_offer(self):
        with self.assertRaises(OneActiveOfferPerBuyer):
            self.offer(self.buyer, '36')


class LazyExpiryTest(OfferTestBase):
    """Test offers expiring as they are touched."""

    def test_expired_offer_cannot_be_accepted(self):
        offer = self.offer(self.buyer, '30')
        self.backdate(offer)

        with self.assertRaises(InvalidState):
            respond_to_offer(self.seller.pk, offer.pk, 'accept')

        # Expiry sticks even though the response failed
        offer.refresh_from_db()
        self.assertEqual(offer.status, Offer.Status.EXPIRED)
        self.assertEqual(self.notices(self.buyer, Notification.EventType.OFFER_EXPIRED), 1)
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, Listing.Status.ACTIVE)

    def test_expired_offer_frees_buyer(self):
        offer = self.offer(self.buyer, '30')
        self.backdate(offer)

        second = self.offer(self.buyer, '31')

        offer.refresh_from_db()
        self.assertEqual(offer.status, Offer.Status.EXPIRED)
        self.assertEqual(second.status, Offer.Status.PENDING)

    def test_reads_expire_offers(self):
        offer = self.offer(self.buyer, '30')
        self.backdate(offer)

        offers = get_buyer_offers(self.buyer.pk)
        self.assertEqual(offers[0].status, Offer.Status.EXPIRED)

    def test_expired_counter_cannot_be_accepted(self):
        offer = self.offer(self.buyer, '30')
        respond_to_offer(self.seller.pk, offer.pk, 'counter', Decimal('35'))
        self.backdate(offer)

        with self.assertRaises(InvalidState):
            respond_to_counter_offer(self.buyer.pk, offer.pk, 'accept')
        offer.refresh_from_db()
        self.assertEqual(offer.status, Offer.Status.EXPIRED)
