from django.db.models import F
from django.db.models.signals import post_save
from django.dispatch import receiver

from .models import SellerRating, User


@receiver(post_save, sender=SellerRating)
def update_seller_rating_counts(sender, instance, created, **kwargs):
    """Keep the seller's cached rating counters in step with new ratings."""
    if not created:
        return

    if instance.rating_type == SellerRating.RatingType.POSITIVE:
        User.objects.filter(pk=instance.seller_id).update(
            positive_ratings=F('positive_ratings') + 1
        )
    else:
        User.objects.filter(pk=instance.seller_id).update(
            negative_ratings=F('negative_ratings') + 1
        )
