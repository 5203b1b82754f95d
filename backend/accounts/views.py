# views.py
import logging

from django.contrib.auth import update_session_auth_hash
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .serializers import PasswordUpdateSerializer, first_error

logger = logging.getLogger(__name__)


class UpdatePasswordView(APIView):
    """
    POST /api/update-password
    Body: {userId, currentPassword, newPassword, confirmPassword?}
    Returns {"success": true} or {"success": false, "error": "..."}.
    """

    def post(self, request):
        serializer = PasswordUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({"success": False, "error": first_error(serializer.errors)},
                            status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        user = request.user
        if data["userId"] != user.pk:
            logger.warning("User %s tried to change the password of user %s", user.pk, data["userId"])
            return Response({"success": False, "error": "You can only update your own password"},
                            status=status.HTTP_403_FORBIDDEN)

        if not user.check_password(data["currentPassword"]):
            return Response({"success": False, "error": "Current password is incorrect"},
                            status=status.HTTP_400_BAD_REQUEST)

        user.set_password(data["newPassword"])
        user.save(update_fields=["password"])
        # keep the caller's session valid after the hash changes
        update_session_auth_hash(request, user)
        logger.info("Password updated for user_id=%s", user.pk)
        return Response({"success": True}, status=status.HTTP_200_OK)
