"""
User views: current actor only.

Generic user listing and management belong to the wider marketplace.
"""

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from core.permissions import IsAuthenticatedReadOnly
from apps.users.serializers import UserSerializer


@api_view(["GET"])
@permission_classes([IsAuthenticatedReadOnly])
def get_current_user(request):
    """
    GET /api/v1/users/me

    Get the authenticated actor.
    """
    serializer = UserSerializer(request.user)
    return Response({"data": serializer.data}, status=status.HTTP_200_OK)
