from django.db.models import Q
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema

from auctions.engine import offers
from auctions.models import Offer
from auctions.api.serializers import (
    OfferSerializer,
    OfferResponseSerializer,
    CounterResponseSerializer,
)


class OfferViewSet(viewsets.ReadOnlyModelViewSet):
    """
    API endpoint for offers.

    GET /api/offers/ - Offers the user made or received (filterable by status, listing)
    GET /api/offers/<id>/ - Get offer detail
    POST /api/offers/<id>/respond/ - Seller accepts, rejects or counters
    POST /api/offers/<id>/respond-counter/ - Buyer accepts or rejects a counter-offer
    """
    permission_classes = [IsAuthenticated]
    serializer_class = OfferSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'listing']

    def get_queryset(self):
        """Return offers the user is a party to, with stale ones expired first."""
        user = self.request.user
        mine = Offer.objects.filter(Q(buyer=user) | Q(listing__seller=user))
        offers.expire_lazily(mine)
        return mine.select_related('listing', 'buyer').order_by('-created_at')

    @extend_schema(
        request=OfferResponseSerializer,
        responses={200: OfferSerializer},
        description='Seller accepts, rejects or counters a pending offer'
    )
    @action(detail=True, methods=['post'])
    def respond(self, request, pk=None):
        """POST /api/offers/<id>/respond/"""
        serializer = OfferResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        offer, _ = offers.respond_to_offer(
            request.user.pk,
            pk,
            serializer.validated_data['action'],
            counter_amount=serializer.validated_data.get('counter_amount'),
        )
        return Response(OfferSerializer(offer).data)

    @extend_schema(
        request=CounterResponseSerializer,
        responses={200: OfferSerializer},
        description='Buyer accepts or rejects a counter-offer'
    )
    @action(detail=True, methods=['post'], url_path='respond-counter')
    def respond_counter(self, request, pk=None):
        """POST /api/offers/<id>/respond-counter/"""
        serializer = CounterResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        offer, _ = offers.respond_to_counter_offer(
            request.user.pk,
            pk,
            serializer.validated_data['action'],
        )
        return Response(OfferSerializer(offer).data)
