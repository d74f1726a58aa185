from rest_framework import serializers

from auctions.models import Bid


class BidCreateSerializer(serializers.Serializer):
    """Serializer for placing a proxy bid."""
    max_bid = serializers.DecimalField(max_digits=10, decimal_places=2)


class BidSerializer(serializers.ModelSerializer):
    """A bidder's own bid, maximum included."""
    listing_id = serializers.UUIDField(source='listing.id', read_only=True)
    listing_title = serializers.CharField(source='listing.title', read_only=True)
    listing_status = serializers.CharField(source='listing.status', read_only=True)
    current_price = serializers.DecimalField(
        source='listing.current_price',
        max_digits=10,
        decimal_places=2,
        read_only=True
    )
    is_winning = serializers.SerializerMethodField()

    class Meta:
        model = Bid
        fields = [
            'id',
            'listing_id',
            'listing_title',
            'listing_status',
            'max_bid',
            'price_after',
            'current_price',
            'bidder_number',
            'sequence',
            'is_winning',
            'placed_at',
        ]

    def get_is_winning(self, obj):
        return obj.listing.high_bidder_id == obj.bidder_id


class BidHistoryEntrySerializer(serializers.Serializer):
    """One row of a listing's public bid history."""
    id = serializers.UUIDField()
    sequence = serializers.IntegerField()
    bidder = serializers.CharField()
    bidder_number = serializers.IntegerField()
    is_own = serializers.BooleanField()
    price_after = serializers.DecimalField(max_digits=10, decimal_places=2)
    max_bid = serializers.DecimalField(max_digits=10, decimal_places=2, allow_null=True)
    placed_at = serializers.DateTimeField()


class BidOutcomeSerializer(serializers.Serializer):
    accepted = serializers.BooleanField()
    is_high_bidder = serializers.BooleanField()
    current_price = serializers.DecimalField(max_digits=10, decimal_places=2)
    minimum_next_bid = serializers.DecimalField(max_digits=10, decimal_places=2, allow_null=True)
    message = serializers.CharField()
    status = serializers.CharField(source='listing.status')
    bid_count = serializers.IntegerField(source='listing.bid_count')
