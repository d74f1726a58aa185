"""
Tests for the REST API.

Tests cover:
- JWT login
- Listing create, browse, edit and cancel endpoints
- Bidding endpoints and structured error payloads
- Offer endpoints
- Watchlist, seller profile, notifications and the lifecycle trigger

Run with: python manage.py test auctions.tests_api -v 2
"""

import uuid
from datetime import timedelta
from decimal import Decimal

from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from .engine.bidding import place_bid
from .engine.listings import create_auction, create_fixed_price_listing, purchase_listing
from .models import Listing, Notification, Offer, User


class APITestBase(APITestCase):
    """Base class with a seller, a buyer and a staff user."""

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
        self.staff = User.objects.create_user(
            username='staff',
            email='staff@test.com',
            password='test123',
            is_staff=True
        )

    def make_auction(self, **overrides):
        params = {
            'item_id': 'api-1',
            'title': 'Incredible Hulk #181',
            'starting_price': Decimal('10'),
            'duration_days': 7,
        }
        params.update(overrides)
        return create_auction(self.seller.pk, params)

    def make_fixed(self, **overrides):
        params = {
            'item_id': 'api-2',
            'title': 'Batman Adventures #12',
            'price': Decimal('40'),
            'accepts_offers': True,
            'min_offer_amount': Decimal('25'),
        }
        params.update(overrides)
        return create_fixed_price_listing(self.seller.pk, params)


class AuthAPITest(APITestBase):

    def test_obtain_token(self):
        response = self.client.post('/api/auth/token/', {
            'username': 'buyer',
            'password': 'test123',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

    def test_token_authenticates_requests(self):
        token = self.client.post('/api/auth/token/', {
            'username': 'buyer',
            'password': 'test123',
        }, format='json').data['access']

        self.client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
        response = self.client.get('/api/watchlist/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class ListingAPITest(APITestBase):
    """Test listing endpoints."""

    def test_create_auction(self):
        self.client.force_authenticate(user=self.seller)
        response = self.client.post('/api/listings/', {
            'listing_type': 'auction',
            'item_id': 'new-1',
            'title': 'Tales of Suspense #39',
            'starting_price': '10',
            'buy_it_now_price': '75',
            'duration_days': 5,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'active')
        self.assertEqual(response.data['current_price'], '10.00')
        self.assertEqual(response.data['minimum_next_bid'], '10.00')
        self.assertEqual(response.data['seller_username'], 'seller')

    def test_create_auction_missing_fields(self):
        self.client.force_authenticate(user=self.seller)
        response = self.client.post('/api/listings/', {
            'listing_type': 'auction',
            'item_id': 'new-1',
            'starting_price': '10',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('duration_days', response.data)

    def test_create_with_fractional_price(self):
        self.client.force_authenticate(user=self.seller)
        response = self.client.post('/api/listings/', {
            'listing_type': 'fixed_price',
            'item_id': 'new-2',
            'price': '19.50',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'validation_error')
        self.assertEqual(response.data['field'], 'price')

    def test_duplicate_item(self):
        self.make_auction()
        self.client.force_authenticate(user=self.seller)
        response = self.client.post('/api/listings/', {
            'listing_type': 'fixed_price',
            'item_id': 'api-1',
            'price': '20',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'conflict')

    def test_create_requires_login(self):
        response = self.client.post('/api/listings/', {
            'listing_type': 'fixed_price',
            'item_id': 'new-3',
            'price': '20',
        }, format='json')
        self.assertIn(response.status_code, [status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN])

    def test_browse_anonymously(self):
        self.make_auction()
        self.make_fixed()

        response = self.client.get('/api/listings/', {'listing_type': 'auction'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['results']), 1)
        self.assertEqual(response.data['results'][0]['item_id'], 'api-1')

    def test_browse_unknown_sort(self):
        response = self.client.get('/api/listings/', {'sort': 'random'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_retrieve(self):
        listing = self.make_auction()
        place_bid(listing.pk, self.buyer.pk, Decimal('25'))

        self.client.force_authenticate(user=self.buyer)
        response = self.client.get(f'/api/listings/{listing.pk}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_high_bidder'])
        self.assertEqual(response.data['viewer_max_bid'], '25.00')

    def test_retrieve_missing(self):
        response = self.client.get(f'/api/listings/{uuid.uuid4()}/')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'not_found')

    def test_edit_description(self):
        listing = self.make_auction()
        self.client.force_authenticate(user=self.seller)

        response = self.client.patch(f'/api/listings/{listing.pk}/', {
            'description': 'Newsstand copy',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['description'], 'Newsstand copy')
        self.assertEqual(response.data['version'], 2)

    def test_edit_locked_field(self):
        listing = self.make_auction()
        self.client.force_authenticate(user=self.seller)

        response = self.client.patch(f'/api/listings/{listing.pk}/', {'title': 'Renamed'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['field'], 'title')

    def test_edit_by_other_user(self):
        listing = self.make_auction()
        self.client.force_authenticate(user=self.buyer)

        response = self.client.patch(f'/api/listings/{listing.pk}/', {'description': 'x'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'forbidden')

    def test_cancel(self):
        listing = self.make_auction()
        self.client.force_authenticate(user=self.seller)

        response = self.client.post(f'/api/listings/{listing.pk}/cancel/', {
            'reason': 'sold_elsewhere',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'cancelled')

    def test_cancel_with_bids(self):
        listing = self.make_auction()
        place_bid(listing.pk, self.buyer.pk, Decimal('10'))
        self.client.force_authenticate(user=self.seller)

        response = self.client.post(f'/api/listings/{listing.pk}/cancel/', {
            'reason': 'changed_mind',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'invalid_state')


class BiddingAPITest(APITestBase):
    """Test bidding endpoints."""

    def setUp(self):
        super().setUp()
        self.listing = self.make_auction(buy_it_now_price=Decimal('50'))
        self.url = f'/api/listings/{self.listing.pk}/bids/'

    def test_place_bid(self):
        self.client.force_authenticate(user=self.buyer)
        response = self.client.post(self.url, {'max_bid': '20'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['accepted'])
        self.assertTrue(response.data['is_high_bidder'])
        self.assertEqual(response.data['current_price'], '10.00')
        self.assertEqual(response.data['minimum_next_bid'], '10.50')
        self.assertEqual(response.data['bid_count'], 1)

    def test_repeat_max_returns_ok(self):
        self.client.force_authenticate(user=self.buyer)
        self.client.post(self.url, {'max_bid': '20'}, format='json')
        response = self.client.post(self.url, {'max_bid': '20'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['accepted'])

    def test_bid_too_low(self):
        place_bid(self.listing.pk, self.buyer.pk, Decimal('20'))
        other = User.objects.create_user(username='other', password='test123')
        self.client.force_authenticate(user=other)

        response = self.client.post(self.url, {'max_bid': '10'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'bid_too_low')
        self.assertEqual(response.data['minimum_bid'], '10.50')

    def test_seller_bid(self):
        self.client.force_authenticate(user=self.seller)
        response = self.client.post(self.url, {'max_bid': '20'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_suspended_bidder(self):
        self.buyer.is_suspended = True
        self.buyer.save()
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(self.url, {'max_bid': '20'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['error'], 'account_suspended')

    def test_anonymous_bid(self):
        response = self.client.post(self.url, {'max_bid': '20'}, format='json')
        self.assertIn(response.status_code, [status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN])

    def test_bid_history_is_anonymous(self):
        place_bid(self.listing.pk, self.buyer.pk, Decimal('20'))

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data[0]['bidder'], 'Bidder 1')
        self.assertIsNone(response.data[0]['max_bid'])

    def test_staff_sees_bidders(self):
        place_bid(self.listing.pk, self.buyer.pk, Decimal('20'))
        self.client.force_authenticate(user=self.staff)

        response = self.client.get(self.url)

        self.assertEqual(response.data[0]['bidder'], 'buyer')
        self.assertEqual(response.data[0]['max_bid'], '20.00')

    def test_buy_now(self):
        self.client.force_authenticate(user=self.buyer)
        response = self.client.post(f'/api/listings/{self.listing.pk}/buy-now/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'sold')
        self.assertEqual(response.data['winning_amount'], '50.00')

    def test_my_bids(self):
        place_bid(self.listing.pk, self.buyer.pk, Decimal('20'))
        self.client.force_authenticate(user=self.buyer)

        response = self.client.get('/api/user/bids/')

        self.assertEqual(len(response.data), 1)
        self.assertTrue(response.data[0]['is_winning'])


class PurchaseAPITest(APITestBase):
    """Test purchase, checkout and payment endpoints."""

    def setUp(self):
        super().setUp()
        self.listing = self.make_fixed(shipping_cost=Decimal('5'))

    def test_purchase_and_pay(self):
        self.client.force_authenticate(user=self.buyer)
        response = self.client.post(f'/api/listings/{self.listing.pk}/purchase/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['payment_status'], 'pending')

        response = self.client.post(f'/api/listings/{self.listing.pk}/checkout/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['amount'], '45.00')

        response = self.client.get('/api/user/won/')
        self.assertEqual(len(response.data), 1)

        # Payment is recorded by staff or the payment provider
        response = self.client.post(f'/api/listings/{self.listing.pk}/mark-paid/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.staff)
        response = self.client.post(f'/api/listings/{self.listing.pk}/mark-paid/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['payment_status'], 'paid')

    def test_purchase_own_listing(self):
        self.client.force_authenticate(user=self.seller)
        response = self.client.post(f'/api/listings/{self.listing.pk}/purchase/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class OfferAPITest(APITestBase):
    """Test offer endpoints."""

    def setUp(self):
        super().setUp()
        self.listing = self.make_fixed()
        self.url = f'/api/listings/{self.listing.pk}/offers/'

    def make_offer(self, amount='30'):
        self.client.force_authenticate(user=self.buyer)
        return self.client.post(self.url, {'amount': amount}, format='json')

    def test_make_offer(self):
        response = self.make_offer()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['amount'], '30.00')

    def test_offer_below_minimum(self):
        response = self.make_offer('20')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['field'], 'amount')

    def test_second_offer(self):
        first = self.make_offer()
        response = self.make_offer('32')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'active_offer_exists')
        self.assertEqual(response.data['offer_id'], str(first.data['id']))

    def test_counter_and_reject(self):
        offer_id = self.make_offer().data['id']

        self.client.force_authenticate(user=self.seller)
        response = self.client.post(f'/api/offers/{offer_id}/respond/', {
            'action': 'counter',
            'counter_amount': '35',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'countered')
        self.assertEqual(response.data['counter_amount'], '35.00')

        self.client.force_authenticate(user=self.buyer)
        response = self.client.post(f'/api/offers/{offer_id}/respond-counter/', {
            'action': 'reject',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'rejected')

        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, Listing.Status.ACTIVE)

    def test_counter_requires_amount(self):
        offer_id = self.make_offer().data['id']
        self.client.force_authenticate(user=self.seller)

        response = self.client.post(f'/api/offers/{offer_id}/respond/', {'action': 'counter'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_accept(self):
        offer_id = self.make_offer().data['id']
        self.client.force_authenticate(user=self.seller)

        response = self.client.post(f'/api/offers/{offer_id}/respond/', {'action': 'accept'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['accepted_amount'], '30.00')
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, Listing.Status.SOLD)

    def test_expired_offer_response(self):
        offer_id = self.make_offer().data['id']
        Offer.objects.filter(pk=offer_id).update(expires_at=timezone.now() - timedelta(minutes=1))
        self.client.force_authenticate(user=self.seller)

        response = self.client.post(f'/api/offers/{offer_id}/respond/', {'action': 'accept'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Offer.objects.get(pk=offer_id).status, Offer.Status.EXPIRED)

    def test_offer_lists(self):
        self.make_offer()

        response = self.client.get('/api/offers/')
        self.assertEqual(response.data['count'], 1)

        self.client.force_authenticate(user=self.seller)
        response = self.client.get(self.url)
        self.assertEqual(len(response.data), 1)
        response = self.client.get('/api/offers/', {'status': 'pending'})
        self.assertEqual(response.data['count'], 1)

    def test_listing_offers_hidden_from_buyers(self):
        self.make_offer()
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class UserAPITest(APITestBase):
    """Test watchlist, seller and notification endpoints."""

    def test_watch_and_unwatch(self):
        listing = self.make_auction()
        self.client.force_authenticate(user=self.buyer)
        url = f'/api/listings/{listing.pk}/watch/'

        response = self.client.post(url)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(self.client.get(url).data['is_watching'])

        response = self.client.get('/api/watchlist/')
        self.assertEqual(response.data[0]['listing']['id'], str(listing.pk))

        response = self.client.delete(url)
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(self.client.get(url).data['is_watching'])

    def test_seller_profile_and_rating(self):
        listing = self.make_fixed()
        purchase_listing(listing.pk, self.buyer.pk)
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(f'/api/sellers/{self.seller.pk}/ratings/', {
            'listing_id': str(listing.pk),
            'rating_type': 'positive',
            'comment': 'Great packing',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.post(f'/api/sellers/{self.seller.pk}/ratings/', {
            'listing_id': str(listing.pk),
            'rating_type': 'positive',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        self.client.force_authenticate(user=None)
        response = self.client.get(f'/api/sellers/{self.seller.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['positive_percentage'], 100)
        self.assertEqual(response.data['reputation'], 'hero')

        response = self.client.get(f'/api/sellers/{self.seller.pk}/ratings/')
        self.assertEqual(response.data[0]['comment'], 'Great packing')

    def test_rating_wrong_seller(self):
        listing = self.make_fixed()
        purchase_listing(listing.pk, self.buyer.pk)
        self.client.force_authenticate(user=self.buyer)

        response = self.client.post(f'/api/sellers/{self.staff.pk}/ratings/', {
            'listing_id': str(listing.pk),
            'rating_type': 'negative',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'seller_mismatch')

    def test_notifications(self):
        listing = self.make_fixed()
        purchase_listing(listing.pk, self.buyer.pk)
        self.client.force_authenticate(user=self.buyer)

        response = self.client.get('/api/notifications/', {'unread': 'true'})
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['event_type'], 'won')

        response = self.client.post('/api/notifications/read/', {}, format='json')
        self.assertEqual(response.data['updated'], 1)
        self.assertFalse(Notification.objects.filter(user=self.buyer, is_read=False).exists())


class LifecycleAPITest(APITestBase):
    """Test the scheduled lifecycle trigger."""

    def test_staff_only(self):
        self.client.force_authenticate(user=self.buyer)
        response = self.client.post('/api/lifecycle/run/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_run(self):
        listing = self.make_auction()
        place_bid(listing.pk, self.buyer.pk, Decimal('20'))
        Listing.objects.filter(pk=listing.pk).update(end_time=timezone.now() - timedelta(minutes=1))
        self.client.force_authenticate(user=self.staff)

        response = self.client.post('/api/lifecycle/run/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['processed'], 1)
        self.assertEqual(response.data['errors'], [])
        listing.refresh_from_db()
        self.assertEqual(listing.status, Listing.Status.SOLD)
