from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAdminUser, AllowAny
from drf_spectacular.utils import extend_schema

from auctions.engine import bidding, listings, offers, reputation, sales
from auctions.models import Listing
from auctions.api.serializers import (
    ListingSerializer,
    ListingDetailSerializer,
    ListingCreateSerializer,
    ListingUpdateSerializer,
    ListingCancelSerializer,
    ListingSearchSerializer,
    BidCreateSerializer,
    BidHistoryEntrySerializer,
    BidOutcomeSerializer,
    OfferSerializer,
    OfferCreateSerializer,
    WatchlistSerializer,
)


class ListingViewSet(viewsets.GenericViewSet):
    """
    API endpoint for listings, bids and offers.

    GET /api/listings/ - Browse active listings (filters and sort as query params)
    POST /api/listings/ - Create an auction or fixed-price listing
    GET /api/listings/<id>/ - Get listing detail
    PATCH /api/listings/<id>/ - Edit description, images or Buy-It-Now price (seller)
    POST /api/listings/<id>/cancel/ - Cancel listing (seller)
    GET /api/listings/<id>/bids/ - Bid history
    POST /api/listings/<id>/bids/ - Place a proxy bid
    POST /api/listings/<id>/buy-now/ - Buy an auction at its Buy-It-Now price
    POST /api/listings/<id>/purchase/ - Buy a fixed-price listing
    POST /api/listings/<id>/checkout/ - Start payment for a won listing
    POST /api/listings/<id>/mark-paid/ - Record payment (staff)
    GET/POST/DELETE /api/listings/<id>/watch/ - Watchlist membership
    GET /api/listings/<id>/offers/ - Offers on listing (seller)
    POST /api/listings/<id>/offers/ - Make an offer
    """
    queryset = Listing.objects.all()
    serializer_class = ListingSerializer

    def _viewer_id(self):
        user = self.request.user
        return user.pk if user.is_authenticated else None

    @extend_schema(
        parameters=[ListingSearchSerializer],
        responses={200: ListingSerializer(many=True)},
        description='Browse active listings'
    )
    def list(self, request):
        """GET /api/listings/"""
        params = ListingSearchSerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        data = params.validated_data

        results = listings.search_listings(
            filters={
                key: data.get(key)
                for key in ('listing_type', 'seller_id', 'min_price', 'max_price', 'has_buy_it_now', 'ending_soon')
            },
            sort=data['sort'],
            limit=data['limit'],
            offset=data['offset'],
            viewer_id=self._viewer_id(),
        )
        return Response({
            'limit': data['limit'],
            'offset': data['offset'],
            'results': ListingSerializer(results, many=True, context={'request': request}).data,
        })

    @extend_schema(
        request=ListingCreateSerializer,
        responses={201: ListingSerializer},
        description='Create an auction or fixed-price listing'
    )
    def create(self, request):
        """POST /api/listings/"""
        serializer = ListingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        params = dict(serializer.validated_data)
        listing_type = params.pop('listing_type')

        if listing_type == Listing.ListingType.AUCTION:
            listing = listings.create_auction(request.user.pk, params)
        else:
            listing = listings.create_fixed_price_listing(request.user.pk, params)

        return Response(
            ListingSerializer(listing, context={'request': request}).data,
            status=status.HTTP_201_CREATED
        )

    @extend_schema(responses={200: ListingDetailSerializer})
    def retrieve(self, request, pk=None):
        """GET /api/listings/<id>/"""
        listing = listings.get_listing(pk, viewer_id=self._viewer_id())
        return Response(ListingDetailSerializer(listing, context={'request': request}).data)

    @extend_schema(
        request=ListingUpdateSerializer,
        responses={200: ListingSerializer},
        description='Edit an open listing'
    )
    def partial_update(self, request, pk=None):
        """PATCH /api/listings/<id>/"""
        serializer = ListingUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        unknown = set(request.data) - set(serializer.fields)
        patch = dict(serializer.validated_data)
        for key in unknown:
            patch[key] = request.data[key]

        listing = listings.update_listing(pk, request.user.pk, patch)
        return Response(ListingSerializer(listing, context={'request': request}).data)

    @extend_schema(
        request=ListingCancelSerializer,
        responses={200: ListingSerializer},
        description='Cancel a listing'
    )
    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated])
    def cancel(self, request, pk=None):
        """POST /api/listings/<id>/cancel/"""
        serializer = ListingCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        listing, _ = listings.cancel_listing(pk, request.user.pk, serializer.validated_data['reason'])
        return Response(ListingSerializer(listing, context={'request': request}).data)

    @extend_schema(
        methods=['GET'],
        responses={200: BidHistoryEntrySerializer(many=True)},
        description='Bid history with anonymous bidder numbers'
    )
    @extend_schema(
        methods=['POST'],
        request=BidCreateSerializer,
        responses={201: BidOutcomeSerializer},
        description='Place a proxy bid'
    )
    @action(detail=True, methods=['get', 'post'])
    def bids(self, request, pk=None):
        """GET/POST /api/listings/<id>/bids/"""
        if request.method == 'GET':
            history = bidding.get_bid_history(
                pk,
                viewer_id=self._viewer_id(),
                is_platform=request.user.is_staff,
            )
            return Response(BidHistoryEntrySerializer(history, many=True).data)

        serializer = BidCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        outcome = bidding.place_bid(pk, request.user.pk, serializer.validated_data['max_bid'])
        return Response(
            BidOutcomeSerializer(outcome).data,
            status=status.HTTP_201_CREATED if outcome['accepted'] else status.HTTP_200_OK
        )

    @extend_schema(request=None, responses={200: ListingSerializer})
    @action(detail=True, methods=['post'], url_path='buy-now', permission_classes=[IsAuthenticated])
    def buy_now(self, request, pk=None):
        """POST /api/listings/<id>/buy-now/"""
        listing, _ = bidding.buy_it_now(pk, request.user.pk)
        return Response(ListingSerializer(listing, context={'request': request}).data)

    @extend_schema(request=None, responses={200: ListingSerializer})
    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated])
    def purchase(self, request, pk=None):
        """POST /api/listings/<id>/purchase/"""
        listing, _ = listings.purchase_listing(pk, request.user.pk)
        return Response(ListingSerializer(listing, context={'request': request}).data)

    @extend_schema(
        request=None,
        responses={200: {'type': 'object'}},
        description='Create a payment intent for the winning buyer'
    )
    @action(detail=True, methods=['post'], permission_classes=[IsAuthenticated])
    def checkout(self, request, pk=None):
        """POST /api/listings/<id>/checkout/"""
        result = sales.start_checkout(pk, request.user.pk)
        return Response({
            'listing_id': str(result['listing'].pk),
            'amount': str(result['amount']),
            'payment': result['intent'],
        })

    @extend_schema(request=None, responses={200: ListingSerializer})
    @action(detail=True, methods=['post'], url_path='mark-paid', permission_classes=[IsAdminUser])
    def mark_paid(self, request, pk=None):
        """POST /api/listings/<id>/mark-paid/"""
        listing, _ = sales.mark_paid(pk, reference=request.data.get('reference'))
        return Response(ListingSerializer(listing, context={'request': request}).data)

    @extend_schema(request=None, responses={200: {'type': 'object'}})
    @action(detail=True, methods=['get', 'post', 'delete'], permission_classes=[IsAuthenticated])
    def watch(self, request, pk=None):
        """GET/POST/DELETE /api/listings/<id>/watch/"""
        if request.method == 'POST':
            entry = reputation.add_to_watchlist(request.user.pk, pk)
            return Response(WatchlistSerializer(entry).data, status=status.HTTP_201_CREATED)
        if request.method == 'DELETE':
            reputation.remove_from_watchlist(request.user.pk, pk)
            return Response(status=status.HTTP_204_NO_CONTENT)

        listing = listings.get_listing(pk, viewer_id=request.user.pk)
        return Response({'listing_id': str(listing.pk), 'is_watching': listing.is_watching})

    @extend_schema(
        methods=['GET'],
        responses={200: OfferSerializer(many=True)},
        description='Offers received on a listing (seller only)'
    )
    @extend_schema(
        methods=['POST'],
        request=OfferCreateSerializer,
        responses={201: OfferSerializer},
        description='Make an offer on a fixed-price listing'
    )
    @action(detail=True, methods=['get', 'post'], permission_classes=[IsAuthenticated])
    def offers(self, request, pk=None):
        """GET/POST /api/listings/<id>/offers/"""
        if request.method == 'GET':
            listing_offers = offers.get_offers_for_listing(pk, request.user.pk)
            return Response(OfferSerializer(listing_offers, many=True).data)

        serializer = OfferCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        offer, _ = offers.create_offer(request.user.pk, pk, serializer.validated_data['amount'])
        return Response(OfferSerializer(offer).data, status=status.HTTP_201_CREATED)

    def get_permissions(self):
        if self.action in ('list', 'retrieve'):
            return [AllowAny()]
        return super().get_permissions()
