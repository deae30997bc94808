import logging

from django.contrib.auth.models import update_last_login
from django.db import transaction
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, authentication_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .authentication import issue_token
from .emails import send_password_reset
from .models import User
from .password_policy import create_reset_token, hash_token, validate_password_policy
from .serializers import (
    SignupSerializer, LoginSerializer, ForgotPasswordSerializer, ResetPasswordSerializer,
    flatten_errors,
)
from .utils import create_audit_log

logger = logging.getLogger(__name__)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def register_admin(request):
    """Admin self-registration. New admins wait as PENDING until approved."""
    serializer = SignupSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    if User.objects.filter(email__iexact=data['email']).exists():
        return Response({'message': 'Email already in use'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        user = User.objects.create_user(
            email=data['email'],
            password=data['password'],
            name=data['name'],
            role=User.ROLE_ADMIN,
            status=User.STATUS_PENDING,
        )
    except Exception:
        logger.exception("Error registering user")
        return Response({'message': 'Internal server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    create_audit_log(request, 'register', 'User', user.id, user=user, object_name=user.email,
                     changes={'role': user.role})
    return Response({
        'message': 'User registered successfully',
        'userId': user.id,
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def login(request):
    """Exchange email and password for an access token"""
    serializer = LoginSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    email = serializer.validated_data['email']
    password = serializer.validated_data['password']

    user = User.objects.filter(email__iexact=email).first()
    if user is None:
        return Response({'message': 'Invalid email, please register to proceed with login.'},
                        status=status.HTTP_401_UNAUTHORIZED)
    if not user.check_password(password):
        return Response({'message': 'Invalid password.'}, status=status.HTTP_401_UNAUTHORIZED)

    # Donors receive a generated password and must set their own first
    if user.first_login and user.role == User.ROLE_DONOR:
        raw_token = create_reset_token(user)
        try:
            send_password_reset(user.email, raw_token)
        except Exception:
            logger.exception(f"Failed to send password reset email to {user.email}")
            return Response({'message': 'Internal server error'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response({
            'message': 'Please reset your password using the link sent to your email.',
            'requireReset': True,
        }, status=status.HTTP_403_FORBIDDEN)

    update_last_login(None, user)
    return Response({
        'message': 'Login successful',
        'token': issue_token(user),
        'name': user.name,
        'role': user.role,
    })


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def forgot_password(request):
    """Email a reset link when the address belongs to an account"""
    serializer = ForgotPasswordSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    user = User.objects.filter(email__iexact=serializer.validated_data['email']).first()
    if user is not None:
        raw_token = create_reset_token(user)
        try:
            send_password_reset(user.email, raw_token)
        except Exception:
            logger.exception(f"Failed to send password reset email to {user.email}")
    # Same answer whether or not the account exists
    return Response({'message': 'If that email is registered, a password reset link has been sent.'})


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def reset_password(request):
    serializer = ResetPasswordSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    token = serializer.validated_data['token']
    new_password = serializer.validated_data['newPassword']

    user = User.objects.filter(
        reset_token=hash_token(token),
        reset_token_expiry__gt=timezone.now(),
    ).first()
    if user is None:
        return Response({'message': 'Invalid or expired token'}, status=status.HTTP_400_BAD_REQUEST)

    errors = validate_password_policy(new_password, user.name, user.email)
    if errors:
        return Response({'message': ', '.join(errors)}, status=status.HTTP_400_BAD_REQUEST)

    with transaction.atomic():
        user.set_password(new_password)
        user.reset_token = None
        user.reset_token_expiry = None
        user.first_login = False
        user.save()

    create_audit_log(request, 'password_reset', 'User', user.id, user=user, object_name=user.email)
    return Response({'message': 'Password has been reset successfully'})
