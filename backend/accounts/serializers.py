from rest_framework import serializers

from .forms import validate_password_change


class PasswordUpdateSerializer(serializers.Serializer):
    userId = serializers.IntegerField()
    currentPassword = serializers.CharField(required=False, allow_blank=True, default="", trim_whitespace=False)
    newPassword = serializers.CharField(required=False, allow_blank=True, default="", trim_whitespace=False)
    confirmPassword = serializers.CharField(required=False, allow_blank=True, trim_whitespace=False)

    def validate(self, attrs):
        error = validate_password_change(
            attrs["currentPassword"],
            attrs["newPassword"],
            attrs.get("confirmPassword"),
        )
        if error:
            raise serializers.ValidationError(error)
        return attrs


def first_error(errors) -> str:
    """Flatten DRF's error dict down to the first message."""
    if isinstance(errors, dict):
        for value in errors.values():
            return first_error(value)
    if isinstance(errors, (list, tuple)) and errors:
        return first_error(errors[0])
    return str(errors)
