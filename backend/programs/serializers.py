from rest_framework import serializers

from backend.core.serializers import ISODateTimeField
from .models import Program, MAX_TEXT


class ProgramSerializer(serializers.ModelSerializer):
    name = serializers.CharField(max_length=255)
    description = serializers.CharField(max_length=MAX_TEXT)
    startDate = ISODateTimeField(source='start_date', midnight=True)
    aimAndCause = serializers.CharField(source='aim_and_cause', max_length=MAX_TEXT)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Program
        fields = ['id', 'name', 'description', 'startDate', 'aimAndCause', 'createdAt', 'updatedAt']
        read_only_fields = ['id', 'createdAt', 'updatedAt']
