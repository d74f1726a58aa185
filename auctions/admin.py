from django.contrib import admin, messages
from django.contrib.auth.admin import UserAdmin
from django.utils import timezone

from .engine.lifecycle import process_ended_auctions, run_lifecycle
from .engine.sales import mark_paid
from .exceptions import MarketplaceError
from .models import User, Listing, Bid, Offer, Watchlist, SellerRating, Notification
from .notifications import dispatch


# Admin Actions for Users
@admin.action(description="Suspend selected users")
def suspend_users(modeladmin, request, queryset):
    queryset.update(is_suspended=True)


@admin.action(description="Reinstate selected users")
def reinstate_users(modeladmin, request, queryset):
    queryset.update(is_suspended=False)


@admin.register(User)
class CustomUserAdmin(UserAdmin):
    """Admin configuration for custom User model."""
    list_display = ('username', 'email', 'is_suspended', 'positive_ratings', 'negative_ratings', 'seller_since')
    list_filter = UserAdmin.list_filter + ('is_suspended',)
    fieldsets = UserAdmin.fieldsets + (
        ('Marketplace', {'fields': ('phone_number', 'is_suspended', 'positive_ratings', 'negative_ratings', 'seller_since')}),
    )
    actions = [suspend_users, reinstate_users]


# Admin Actions for Listings
@admin.action(description="Close selected auctions that have ended")
def close_ended_auctions(modeladmin, request, queryset):
    now = timezone.now()
    due = queryset.filter(
        listing_type=Listing.ListingType.AUCTION,
        status=Listing.Status.ACTIVE,
        end_time__lte=now,
    )
    if not due.exists():
        modeladmin.message_user(request, "None of the selected auctions have ended.", messages.WARNING)
        return
    result = process_ended_auctions(now)
    modeladmin.message_user(
        request,
        f"Closed {result['processed']} auction(s), skipped {result['skipped']}, {len(result['errors'])} error(s)."
    )


@admin.action(description="Run full lifecycle sweep")
def run_lifecycle_sweep(modeladmin, request, queryset):
    result = run_lifecycle()
    modeladmin.message_user(
        request,
        f"Activated {result['activated']}, closed {result['processed']}, "
        f"expired {result['listings_expired']} listing(s) and {result['offers_expired']} offer(s)."
    )


@admin.action(description="Mark selected sales as paid")
def mark_sales_paid(modeladmin, request, queryset):
    for listing in queryset.filter(status=Listing.Status.SOLD):
        try:
            mark_paid(listing.pk)
        except MarketplaceError as e:
            modeladmin.message_user(request, f"{listing}: {e.message}", messages.ERROR)


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ('__str__', 'seller', 'listing_type', 'status', 'current_price', 'bid_count', 'end_time', 'winner', 'payment_status')
    list_filter = ('listing_type', 'status', 'payment_status', 'created_at')
    search_fields = ('title', 'item_id', 'description', 'seller__username')
    date_hierarchy = 'created_at'
    actions = [close_ended_auctions, run_lifecycle_sweep, mark_sales_paid]
    readonly_fields = ('created_at', 'updated_at', 'version', 'bid_count', 'high_bidder', 'current_price')


@admin.register(Bid)
class BidAdmin(admin.ModelAdmin):
    list_display = ('listing', 'bidder', 'bidder_number', 'max_bid', 'price_after', 'sequence', 'placed_at')
    list_filter = ('placed_at',)
    search_fields = ('listing__title', 'bidder__username')
    readonly_fields = ('listing', 'bidder', 'max_bid', 'price_after', 'bidder_number', 'sequence', 'placed_at')

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ('listing', 'buyer', 'amount', 'counter_amount', 'status', 'expires_at', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('listing__title', 'buyer__username')


@admin.register(Watchlist)
class WatchlistAdmin(admin.ModelAdmin):
    list_display = ('user', 'listing', 'added_at')
    list_filter = ('added_at',)
    search_fields = ('user__username', 'listing__title')


@admin.register(SellerRating)
class SellerRatingAdmin(admin.ModelAdmin):
    list_display = ('seller', 'rater', 'listing', 'rating_type', 'created_at')
    list_filter = ('rating_type', 'created_at')
    search_fields = ('seller__username', 'rater__username', 'comment')


# Admin Action for Notifications
@admin.action(description="Retry delivery of selected notifications")
def retry_notifications(modeladmin, request, queryset):
    pending = list(queryset.filter(dispatched_at__isnull=True))
    errors = dispatch(pending)
    modeladmin.message_user(request, f"Retried {len(pending)} notification(s), {len(errors)} failed.")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('user', 'event_type', 'listing', 'is_read', 'dispatched_at', 'attempts', 'created_at')
    list_filter = ('event_type', 'is_read', 'created_at')
    search_fields = ('user__username', 'title', 'message')
    actions = [retry_notifications]
