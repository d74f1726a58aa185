"""
API URL routes for the collectibles marketplace.

All endpoints are prefixed with /api/ in the main urls.py
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularSwaggerView,
    SpectacularRedocView,
)

from auctions.api.views import (
    ListingViewSet,
    OfferViewSet,
    WatchlistView,
    UserBidsView,
    UserListingsView,
    WonListingsView,
    SellerProfileView,
    SellerRatingsView,
    NotificationListView,
    NotificationReadView,
    LifecycleRunView,
)

# Create router and register viewsets
router = DefaultRouter()
router.register('listings', ListingViewSet, basename='listing')
router.register('offers', OfferViewSet, basename='offer')

urlpatterns = [
    # Router URLs (listings, offers)
    path('', include(router.urls)),

    # JWT authentication endpoints
    path('auth/token/', TokenObtainPairView.as_view(), name='auth-token'),
    path('auth/refresh/', TokenRefreshView.as_view(), name='auth-refresh'),

    # User endpoints
    path('watchlist/', WatchlistView.as_view(), name='watchlist'),
    path('user/bids/', UserBidsView.as_view(), name='user-bids'),
    path('user/listings/', UserListingsView.as_view(), name='user-listings'),
    path('user/won/', WonListingsView.as_view(), name='user-won'),
    path('notifications/', NotificationListView.as_view(), name='notifications'),
    path('notifications/read/', NotificationReadView.as_view(), name='notifications-read'),

    # Seller reputation
    path('sellers/<int:seller_id>/', SellerProfileView.as_view(), name='seller-profile'),
    path('sellers/<int:seller_id>/ratings/', SellerRatingsView.as_view(), name='seller-ratings'),

    # Scheduled lifecycle trigger
    path('lifecycle/run/', LifecycleRunView.as_view(), name='lifecycle-run'),

    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('docs/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
    path('redoc/', SpectacularRedocView.as_view(url_name='schema'), name='redoc'),
]
