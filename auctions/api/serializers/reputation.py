from rest_framework import serializers

from auctions.models import Notification, SellerRating, Watchlist
from .listing import ListingSerializer


class WatchlistSerializer(serializers.ModelSerializer):
    listing = ListingSerializer(read_only=True)

    class Meta:
        model = Watchlist
        fields = ['id', 'listing', 'added_at']


class SellerRatingSerializer(serializers.ModelSerializer):
    rater_username = serializers.CharField(source='rater.username', read_only=True)
    listing_id = serializers.UUIDField(source='listing.id', read_only=True)
    listing_title = serializers.CharField(source='listing.title', read_only=True)

    class Meta:
        model = SellerRating
        fields = [
            'id',
            'rater_username',
            'listing_id',
            'listing_title',
            'rating_type',
            'comment',
            'created_at',
        ]


class SellerRatingCreateSerializer(serializers.Serializer):
    listing_id = serializers.UUIDField()
    rating_type = serializers.ChoiceField(choices=SellerRating.RatingType.choices)
    comment = serializers.CharField(required=False, allow_blank=True, max_length=500)


class SellerProfileSerializer(serializers.Serializer):
    """Public seller profile with reputation summary."""
    id = serializers.IntegerField(source='seller.id')
    username = serializers.CharField(source='seller.username')
    positive_ratings = serializers.IntegerField()
    negative_ratings = serializers.IntegerField()
    total_ratings = serializers.IntegerField()
    positive_percentage = serializers.IntegerField(allow_null=True)
    reputation = serializers.CharField()
    seller_since = serializers.DateTimeField(allow_null=True)
    active_listings = serializers.IntegerField()


class NotificationSerializer(serializers.ModelSerializer):
    listing_id = serializers.UUIDField(read_only=True)
    offer_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Notification
        fields = [
            'id',
            'event_type',
            'title',
            'message',
            'listing_id',
            'offer_id',
            'metadata',
            'is_read',
            'created_at',
        ]


class NotificationReadSerializer(serializers.Serializer):
    """Notifications to mark read. Omit ``ids`` to mark all read."""
    ids = serializers.ListField(child=serializers.UUIDField(), required=False)
