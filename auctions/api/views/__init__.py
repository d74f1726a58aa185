from .listings import ListingViewSet
from .offers import OfferViewSet
from .user import (
    WatchlistView,
    UserBidsView,
    UserListingsView,
    WonListingsView,
    SellerProfileView,
    SellerRatingsView,
    NotificationListView,
    NotificationReadView,
)
from .lifecycle import LifecycleRunView

__all__ = [
    'ListingViewSet',
    'OfferViewSet',
    'WatchlistView',
    'UserBidsView',
    'UserListingsView',
    'WonListingsView',
    'SellerProfileView',
    'SellerRatingsView',
    'NotificationListView',
    'NotificationReadView',
    'LifecycleRunView',
]
