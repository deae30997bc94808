from datetime import date, datetime, time, timezone as dt_timezone

from django.utils.dateparse import parse_date
from rest_framework import serializers

from .models import User
from .password_policy import validate_password_policy


def _error_messages(value):
    if isinstance(value, dict):
        for field, inner in value.items():
            for message in _error_messages(inner):
                yield message if field == 'non_field_errors' else f"{field}: {message}"
    elif isinstance(value, (list, tuple)):
        for inner in value:
            yield from _error_messages(inner)
    else:
        yield str(value)


def flatten_errors(errors):
    """Join DRF serializer errors into one 'field: message, field: message' string"""
    return ', '.join(_error_messages(errors))


class ISODateTimeField(serializers.DateTimeField):
    """
    DateTimeField that also accepts a bare ISO date ("2024-03-01").

    Dates and naive datetimes are taken as UTC. With midnight=True the value
    is truncated to 00:00:00 UTC of its UTC calendar day.
    """

    def __init__(self, midnight=False, **kwargs):
        self.midnight = midnight
        super().__init__(**kwargs)

    def to_internal_value(self, value):
        if isinstance(value, str):
            value = value.strip()
            parsed = parse_date(value) if len(value) == 10 else None
            if parsed is not None:
                value = datetime.combine(parsed, time.min, tzinfo=dt_timezone.utc)
        elif isinstance(value, date) and not isinstance(value, datetime):
            value = datetime.combine(value, time.min, tzinfo=dt_timezone.utc)
        result = super().to_internal_value(value)
        if self.midnight:
            result = result.astimezone(dt_timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        return result


class UserSerializer(serializers.ModelSerializer):
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'name', 'email', 'role', 'status', 'createdAt']
        read_only_fields = fields


class PendingUserSerializer(serializers.ModelSerializer):
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'name', 'email', 'role', 'createdAt']
        read_only_fields = fields


class SignupSerializer(serializers.Serializer):
    """Admin self-registration"""
    name = serializers.CharField(max_length=100, trim_whitespace=True)
    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, trim_whitespace=False)

    def validate(self, attrs):
        errors = validate_password_policy(attrs['password'], attrs['name'], attrs['email'])
        if errors:
            raise serializers.ValidationError({'password': errors})
        return attrs


class LoginSerializer(serializers.Serializer):
    email = serializers.EmailField()
    password = serializers.CharField(trim_whitespace=False)


class ForgotPasswordSerializer(serializers.Serializer):
    email = serializers.EmailField()


class ResetPasswordSerializer(serializers.Serializer):
    token = serializers.CharField()
    newPassword = serializers.CharField(trim_whitespace=False)
