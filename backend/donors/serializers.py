from rest_framework import serializers

from .models import Donor


class DonorSerializer(serializers.ModelSerializer):
    firstName = serializers.CharField(source='first_name', max_length=100)
    lastName = serializers.CharField(source='last_name', max_length=100)
    addressLine1 = serializers.CharField(source='address_line1', max_length=255)
    addressLine2 = serializers.CharField(source='address_line2', max_length=255, required=False,
                                         allow_blank=True, allow_null=True)
    emailOptIn = serializers.BooleanField(source='email_opt_in', required=False)
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)

    class Meta:
        model = Donor
        fields = ['id', 'firstName', 'lastName', 'contact', 'email', 'addressLine1', 'addressLine2',
                  'state', 'city', 'zipcode', 'emailOptIn', 'createdAt', 'updatedAt']
        read_only_fields = ['id', 'createdAt', 'updatedAt']


class DonorRegisterSerializer(serializers.Serializer):
    """Public donor self-registration"""
    name = serializers.CharField(max_length=100)
    email = serializers.EmailField()


class UserUpdateSerializer(serializers.Serializer):
    role = serializers.CharField(required=False, allow_blank=True)
    status = serializers.CharField(required=False, allow_blank=True)
