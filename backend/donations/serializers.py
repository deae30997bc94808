from rest_framework import serializers

from backend.core.serializers import ISODateTimeField
from backend.donors.serializers import DonorSerializer
from backend.programs.serializers import ProgramSerializer
from .models import DonatedItem, DonatedItemStatus
from .storage import fetch_sas_urls


class OptionalIdField(serializers.IntegerField):
    """Positive integer id; an empty string (as sent by forms) means no value"""

    def __init__(self, **kwargs):
        kwargs.setdefault('required', False)
        kwargs.setdefault('allow_null', True)
        kwargs.setdefault('min_value', 1)
        super().__init__(**kwargs)

    def validate_empty_values(self, data):
        if data == '':
            return (True, None)
        return super().validate_empty_values(data)


class DonatedItemInputSerializer(serializers.Serializer):
    """
    Request body for creating or updating a donated item.

    Values arrive as JSON or multipart form strings: numeric strings are
    coerced, "true"/"false" become booleans and dateDonated is truncated to
    midnight UTC. Unknown keys are ignored.
    """
    itemType = serializers.CharField(max_length=255)
    currentStatus = serializers.ChoiceField(choices=DonatedItem.STATUS_VALUES)
    donorId = serializers.IntegerField(min_value=1)
    programId = OptionalIdField()
    dateDonated = ISODateTimeField(midnight=True)
    category = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(min_value=1)
    optOutAnalysis = serializers.BooleanField(required=False, default=False)

    def to_model_fields(self):
        data = self.validated_data
        return {
            'item_type': data['itemType'],
            'current_status': data['currentStatus'],
            'date_donated': data['dateDonated'],
            'category': data['category'],
            'quantity': data['quantity'],
        }


class DonatedItemStatusInputSerializer(serializers.Serializer):
    statusType = serializers.ChoiceField(choices=DonatedItem.STATUS_VALUES)
    dateModified = ISODateTimeField(required=False, allow_null=True)
    informDonor = serializers.BooleanField(required=False, default=False)
    optOutAnalysis = serializers.BooleanField(required=False, default=False)


class DonatedItemStatusSerializer(serializers.ModelSerializer):
    statusType = serializers.CharField(source='status_type', read_only=True)
    dateModified = serializers.DateTimeField(source='date_modified', read_only=True)
    donatedItemId = serializers.IntegerField(source='donated_item_id', read_only=True)
    imageUrls = serializers.SerializerMethodField()

    class Meta:
        model = DonatedItemStatus
        fields = ['id', 'statusType', 'dateModified', 'donatedItemId', 'imageUrls']

    def get_imageUrls(self, obj):
        # Signed URLs are only produced when the caller asks for them
        if self.context.get('sign_urls'):
            return fetch_sas_urls(obj.image_urls)
        return list(obj.image_urls or [])


class DonatedItemSerializer(serializers.ModelSerializer):
    itemType = serializers.CharField(source='item_type', read_only=True)
    currentStatus = serializers.CharField(source='current_status', read_only=True)
    dateDonated = serializers.DateTimeField(source='date_donated', read_only=True)
    lastUpdated = serializers.DateTimeField(source='last_updated', read_only=True)
    donorId = serializers.IntegerField(source='donor_id', read_only=True)
    programId = serializers.IntegerField(source='program_id', read_only=True, allow_null=True)
    analysisMetadata = serializers.JSONField(source='analysis_metadata', read_only=True)

    class Meta:
        model = DonatedItem
        fields = ['id', 'itemType', 'category', 'quantity', 'currentStatus', 'dateDonated',
                  'lastUpdated', 'donorId', 'programId', 'analysisMetadata']


class DonatedItemDetailSerializer(DonatedItemSerializer):
    """Item with its donor, program and chronological status history"""
    donor = DonorSerializer(read_only=True)
    program = ProgramSerializer(read_only=True, allow_null=True)
    statuses = serializers.SerializerMethodField()

    class Meta(DonatedItemSerializer.Meta):
        fields = DonatedItemSerializer.Meta.fields + ['donor', 'program', 'statuses']

    def get_statuses(self, obj):
        statuses = sorted(obj.statuses.all(), key=lambda s: (s.date_modified, s.id))
        return DonatedItemStatusSerializer(statuses, many=True, context=self.context).data
