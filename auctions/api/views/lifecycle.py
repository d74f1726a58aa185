from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAdminUser
from drf_spectacular.utils import extend_schema

from auctions.engine.lifecycle import run_lifecycle


class LifecycleRunView(APIView):
    """
    API endpoint for the scheduled lifecycle trigger.

    POST /api/lifecycle/run/ - Activate, close and expire due listings and offers.
    Safe to call on any schedule; already-processed listings are skipped.
    """
    permission_classes = [IsAdminUser]

    @extend_schema(
        request=None,
        responses={200: {'type': 'object'}},
        description='Run every lifecycle sweep once'
    )
    def post(self, request):
        """POST /api/lifecycle/run/"""
        return Response(run_lifecycle())
