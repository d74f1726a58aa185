from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAuthenticatedOrReadOnly
from drf_spectacular.utils import extend_schema

from auctions import notifications
from auctions.engine import bidding, listings, reputation
from auctions.models import Listing, Notification
from auctions.api.serializers import (
    BidSerializer,
    ListingSerializer,
    WatchlistSerializer,
    SellerRatingSerializer,
    SellerRatingCreateSerializer,
    SellerProfileSerializer,
    NotificationSerializer,
    NotificationReadSerializer,
)


class WatchlistView(APIView):
    """
    API endpoint for the user's watchlist.

    GET /api/watchlist/ - Listings the user is watching
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: WatchlistSerializer(many=True)})
    def get(self, request):
        """GET /api/watchlist/"""
        entries = reputation.get_watchlist(request.user.pk)
        return Response(WatchlistSerializer(entries, many=True).data)


class UserBidsView(APIView):
    """
    API endpoint for the user's bids.

    GET /api/user/bids/ - Live bid on every listing the user has bid on
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: BidSerializer(many=True)})
    def get(self, request):
        """GET /api/user/bids/"""
        bids = bidding.get_user_bids(request.user.pk)
        return Response(BidSerializer(bids, many=True).data)


class UserListingsView(APIView):
    """
    API endpoint for the user's own listings.

    GET /api/user/listings/?status=<status> - Listings the user is selling
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: ListingSerializer(many=True)})
    def get(self, request):
        """GET /api/user/listings/"""
        selling = listings.get_seller_listings(request.user.pk, status=request.query_params.get('status'))
        return Response(ListingSerializer(selling, many=True, context={'request': request}).data)


class WonListingsView(APIView):
    """
    API endpoint for listings the user bought.

    GET /api/user/won/ - Won auctions and purchases
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: ListingSerializer(many=True)})
    def get(self, request):
        """GET /api/user/won/"""
        won = listings.get_won_listings(request.user.pk)
        return Response(ListingSerializer(won, many=True, context={'request': request}).data)


class SellerProfileView(APIView):
    """
    API endpoint for public seller profiles.

    GET /api/sellers/<id>/ - Reputation summary
    """
    permission_classes = [IsAuthenticatedOrReadOnly]

    @extend_schema(responses={200: SellerProfileSerializer})
    def get(self, request, seller_id):
        """GET /api/sellers/<id>/"""
        profile = reputation.get_seller_profile(seller_id)
        return Response(SellerProfileSerializer(profile).data)


class SellerRatingsView(APIView):
    """
    API endpoint for seller ratings.

    GET /api/sellers/<id>/ratings/ - Recent ratings
    POST /api/sellers/<id>/ratings/ - Rate the seller of a listing you bought
    """
    permission_classes = [IsAuthenticatedOrReadOnly]

    @extend_schema(responses={200: SellerRatingSerializer(many=True)})
    def get(self, request, seller_id):
        """GET /api/sellers/<id>/ratings/"""
        ratings = reputation.get_seller_ratings(seller_id)
        return Response(SellerRatingSerializer(ratings, many=True).data)

    @extend_schema(
        request=SellerRatingCreateSerializer,
        responses={201: SellerRatingSerializer},
        description='Leave feedback for a completed purchase'
    )
    def post(self, request, seller_id):
        """POST /api/sellers/<id>/ratings/"""
        serializer = SellerRatingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if Listing.objects.filter(pk=data['listing_id']).exclude(seller_id=seller_id).exists():
            return Response({
                'error': 'seller_mismatch',
                'message': "That listing was not sold by this seller.",
            }, status=status.HTTP_400_BAD_REQUEST)

        rating = reputation.submit_seller_rating(
            request.user.pk,
            data['listing_id'],
            data['rating_type'],
            data.get('comment', ''),
        )
        return Response(SellerRatingSerializer(rating).data, status=status.HTTP_201_CREATED)


class NotificationListView(generics.ListAPIView):
    """
    API endpoint for the user's notifications.

    GET /api/notifications/?unread=true - Newest first
    """
    permission_classes = [IsAuthenticated]
    serializer_class = NotificationSerializer

    def get_queryset(self):
        queryset = Notification.objects.filter(user=self.request.user).order_by('-created_at')
        if self.request.query_params.get('unread') in ('1', 'true', 'True'):
            queryset = queryset.filter(is_read=False)
        return queryset


class NotificationReadView(APIView):
    """
    API endpoint for marking notifications read.

    POST /api/notifications/read/ - Mark the given ids (or all) read
    """
    permission_classes = [IsAuthenticated]

    @extend_schema(
        request=NotificationReadSerializer,
        responses={200: {'type': 'object', 'properties': {'updated': {'type': 'integer'}}}}
    )
    def post(self, request):
        """POST /api/notifications/read/"""
        serializer = NotificationReadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        updated = notifications.mark_read(request.user.pk, serializer.validated_data.get('ids'))
        return Response({'updated': updated})
