from rest_framework import serializers

from auctions.engine.listings import SORTS
from auctions.models import Listing


class ListingSerializer(serializers.ModelSerializer):
    """Listing serializer for display."""
    seller_id = serializers.IntegerField(source='seller.id', read_only=True)
    seller_username = serializers.CharField(source='seller.username', read_only=True)
    time_remaining = serializers.SerializerMethodField()
    minimum_next_bid = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        read_only=True
    )
    is_watching = serializers.SerializerMethodField()
    is_high_bidder = serializers.SerializerMethodField()

    class Meta:
        model = Listing
        fields = [
            'id',
            'seller_id',
            'seller_username',
            'item_id',
            'title',
            'listing_type',
            'status',
            'starting_price',
            'price',
            'current_price',
            'buy_it_now_price',
            'bid_count',
            'minimum_next_bid',
            'start_time',
            'end_time',
            'time_remaining',
            'accepts_offers',
            'min_offer_amount',
            'shipping_cost',
            'description',
            'detail_images',
            'winning_amount',
            'payment_status',
            'payment_deadline',
            'cancel_reason',
            'is_watching',
            'is_high_bidder',
            'version',
            'created_at',
            'updated_at',
        ]

    def get_time_remaining(self, obj):
        """Seconds until the listing ends."""
        remaining = obj.time_remaining
        if remaining is None:
            return None
        return int(remaining.total_seconds())

    def get_is_watching(self, obj):
        return bool(getattr(obj, 'is_watching', False))

    def get_is_high_bidder(self, obj):
        request = self.context.get('request')
        if request is None or not request.user.is_authenticated:
            return False
        return obj.high_bidder_id == request.user.pk


class ListingDetailSerializer(ListingSerializer):
    """Listing with the viewer's own live bid."""
    viewer_max_bid = serializers.SerializerMethodField()

    class Meta(ListingSerializer.Meta):
        fields = ListingSerializer.Meta.fields + ['viewer_max_bid']

    def get_viewer_max_bid(self, obj):
        bid = getattr(obj, 'viewer_bid', None)
        return str(bid.max_bid) if bid else None


class ListingCreateSerializer(serializers.Serializer):
    """Serializer for creating auction and fixed-price listings."""
    listing_type = serializers.ChoiceField(choices=Listing.ListingType.choices)
    item_id = serializers.CharField(max_length=64)
    title = serializers.CharField(max_length=200, required=False, allow_blank=True)
    starting_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    buy_it_now_price = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        required=False,
        allow_null=True
    )
    duration_days = serializers.IntegerField(required=False)
    start_time = serializers.DateTimeField(required=False, allow_null=True)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    accepts_offers = serializers.BooleanField(required=False, default=False)
    min_offer_amount = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        required=False,
        allow_null=True
    )
    shipping_cost = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    detail_images = serializers.ListField(child=serializers.URLField(), required=False)

    def validate(self, data):
        """Check the fields each listing type needs."""
        if data['listing_type'] == Listing.ListingType.AUCTION:
            for field in ('starting_price', 'duration_days'):
                if data.get(field) is None:
                    raise serializers.ValidationError({
                        field: "This field is required for auctions."
                    })
        elif data.get('price') is None:
            raise serializers.ValidationError({
                "price": "Price is required for fixed-price listings."
            })
        return data


class ListingUpdateSerializer(serializers.Serializer):
    description = serializers.CharField(required=False, allow_blank=True)
    detail_images = serializers.ListField(child=serializers.URLField(), required=False)
    buy_it_now_price = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        required=False,
        allow_null=True
    )


class ListingCancelSerializer(serializers.Serializer):
    reason = serializers.ChoiceField(choices=Listing.CancelReason.choices)


class ListingSearchSerializer(serializers.Serializer):
    """Query parameters for browsing active listings."""
    listing_type = serializers.ChoiceField(choices=Listing.ListingType.choices, required=False)
    seller_id = serializers.IntegerField(required=False)
    min_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    max_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    has_buy_it_now = serializers.BooleanField(required=False, default=False)
    ending_soon = serializers.BooleanField(required=False, default=False)
    sort = serializers.ChoiceField(choices=list(SORTS), required=False, default='ending_soonest')
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False, default=50)
    offset = serializers.IntegerField(min_value=0, required=False, default=0)
