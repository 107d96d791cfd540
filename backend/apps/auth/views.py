"""
Login view.

Session validation itself is done by simplejwt on every request; this
module only issues tokens.
"""

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework_simplejwt.tokens import RefreshToken
from django.contrib.auth import authenticate
from apps.auth.serializers import LoginSerializer
from apps.users.serializers import UserSerializer


@api_view(["POST"])
@permission_classes([AllowAny])
def login(request):
    """
    POST /api/v1/auth/login

    Authenticate user and return a JWT access token.
    """
    serializer = LoginSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)

    user = authenticate(
        username=serializer.validated_data["username"],
        password=serializer.validated_data["password"],
    )

    if user is None:
        return Response(
            {
                "error": {
                    "code": "UNAUTHORIZED",
                    "message": "Invalid credentials",
                    "details": {},
                }
            },
            status=status.HTTP_401_UNAUTHORIZED,
        )

    refresh = RefreshToken.for_user(user)
    return Response(
        {
            "data": {
                "token": str(refresh.access_token),
                "user": UserSerializer(user).data,
            }
        },
        status=status.HTTP_200_OK,
    )
