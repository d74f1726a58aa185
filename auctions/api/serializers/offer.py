from rest_framework import serializers

from auctions.models import Offer


class OfferSerializer(serializers.ModelSerializer):
    """Offer serializer for display."""
    listing_id = serializers.UUIDField(source='listing.id', read_only=True)
    listing_title = serializers.CharField(source='listing.title', read_only=True)
    asking_price = serializers.DecimalField(
        source='listing.price',
        max_digits=10,
        decimal_places=2,
        read_only=True
    )
    buyer_username = serializers.CharField(source='buyer.username', read_only=True)

    class Meta:
        model = Offer
        fields = [
            'id',
            'listing_id',
            'listing_title',
            'asking_price',
            'buyer_username',
            'amount',
            'counter_amount',
            'accepted_amount',
            'status',
            'expires_at',
            'responded_at',
            'created_at',
            'updated_at',
        ]


class OfferCreateSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)


class OfferResponseSerializer(serializers.Serializer):
    """Seller's answer to a pending offer."""
    action = serializers.ChoiceField(choices=Offer.Action.choices)
    counter_amount = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        required=False,
        allow_null=True
    )

    def validate(self, data):
        if data['action'] == Offer.Action.COUNTER and data.get('counter_amount') is None:
            raise serializers.ValidationError({
                "counter_amount": "counter_amount is required to counter an offer."
            })
        return data


class CounterResponseSerializer(serializers.Serializer):
    """Buyer's answer to a counter-offer."""
    action = serializers.ChoiceField(choices=[
        (Offer.Action.ACCEPT, 'Accept'),
        (Offer.Action.REJECT, 'Reject'),
    ])
