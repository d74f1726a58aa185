from .listing import (
    ListingSerializer,
    ListingDetailSerializer,
    ListingCreateSerializer,
    ListingUpdateSerializer,
    ListingCancelSerializer,
    ListingSearchSerializer,
)
from .bidding import (
    BidCreateSerializer,
    BidSerializer,
    BidHistoryEntrySerializer,
    BidOutcomeSerializer,
)
from .offer import (
    OfferSerializer,
    OfferCreateSerializer,
    OfferResponseSerializer,
    CounterResponseSerializer,
)
from .reputation import (
    WatchlistSerializer,
    SellerRatingSerializer,
    SellerRatingCreateSerializer,
    SellerProfileSerializer,
    NotificationSerializer,
    NotificationReadSerializer,
)

__all__ = [
    'ListingSerializer',
    'ListingDetailSerializer',
    'ListingCreateSerializer',
    'ListingUpdateSerializer',
    'ListingCancelSerializer',
    'ListingSearchSerializer',
    'BidCreateSerializer',
    'BidSerializer',
    'BidHistoryEntrySerializer',
    'BidOutcomeSerializer',
    'OfferSerializer',
    'OfferCreateSerializer',
    'OfferResponseSerializer',
    'CounterResponseSerializer',
    'WatchlistSerializer',
    'SellerRatingSerializer',
    'SellerRatingCreateSerializer',
    'SellerProfileSerializer',
    'NotificationSerializer',
    'NotificationReadSerializer',
]
