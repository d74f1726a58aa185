from rest_framework.views import exception_handler
from rest_framework.response import Response

from auctions.exceptions import MarketplaceError


def custom_exception_handler(exc, context):
    """
    Custom exception handler that converts domain exceptions to API responses.
    """
    # Call REST framework's default exception handler first
    response = exception_handler(exc, context)

    if response is not None:
        return response

    # Marketplace exceptions carry their own code and status
    if isinstance(exc, MarketplaceError):
        return Response(exc.as_dict(), status=exc.status_code)

    # Return None for unhandled exceptions (will use default handling)
    return None
