import logging

from django.db import transaction
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, authentication_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from backend.core.authentication import IsActiveAccount, IsAdminRole, is_admin_request
from backend.core.emails import (
    send_welcome_email, send_password_reset, send_account_update_email, send_approval_request_email,
)
from backend.core.models import User
from backend.core.password_policy import generate_random_password, create_reset_token
from backend.core.serializers import UserSerializer, PendingUserSerializer, flatten_errors
from backend.core.utils import create_audit_log
from backend.donations.models import DonatedItem
from backend.donations.serializers import DonatedItemSerializer
from .models import Donor
from .serializers import DonorSerializer, DonorRegisterSerializer, UserUpdateSerializer

logger = logging.getLogger(__name__)

ALLOWED_ROLES = [User.ROLE_ADMIN, User.ROLE_DONOR]
ALLOWED_STATUSES = [User.STATUS_PENDING, User.STATUS_ACTIVE, User.STATUS_SUSPENDED]


@api_view(['GET', 'POST'])
@permission_classes([IsAdminRole])
def donor_list_create(request):
    """List all donors or create a new donor"""
    if request.method == 'GET':
        try:
            donors = Donor.objects.all()
            return Response(DonorSerializer(donors, many=True).data)
        except Exception:
            logger.exception("Error fetching donors")
            return Response({'message': 'Error fetching donors'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    serializer = DonorSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    try:
        donor = serializer.save()
    except Exception:
        logger.exception("Error creating donor")
        return Response({'message': 'Error creating donor'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info(f"New donor created: {donor.id} {donor.email}")

    try:
        send_welcome_email(donor.email, donor.full_name)
    except Exception as e:
        logger.warning(f"Failed to send welcome email to {donor.email}: {e}")

    create_audit_log(request, 'create', 'Donor', donor.id, object_name=donor.full_name)
    return Response(DonorSerializer(donor).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAdminRole])
def donor_emails(request):
    """Email addresses of all donors"""
    try:
        emails = list(Donor.objects.values_list('email', flat=True))
    except Exception:
        logger.exception("Error fetching donor emails")
        return Response({'message': 'Error fetching donor emails'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(emails)


@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
def register_donor(request):
    """
    Donor self-registration.

    The account starts PENDING with a generated password and first_login set,
    so the donor has to choose a password through the emailed reset link.
    Every ACTIVE admin is asked to approve the account.
    """
    serializer = DonorRegisterSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    name = serializer.validated_data['name']
    email = serializer.validated_data['email']
    if User.objects.filter(email__iexact=email).exists():
        return Response({'message': 'Email already in use'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        user = User.objects.create_user(
            email=email,
            password=generate_random_password(),
            name=name,
            role=User.ROLE_DONOR,
            status=User.STATUS_PENDING,
            first_login=True,
        )
        raw_token = create_reset_token(user)
        send_password_reset(user.email, raw_token)
        logger.info(f"Password reset email sent to {user.email}")
    except Exception:
        logger.exception("Error registering donor")
        return Response({'message': 'Error registering donor'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    admins = User.objects.filter(role=User.ROLE_ADMIN, status=User.STATUS_ACTIVE)
    if not admins.exists():
        logger.warning("There are no active admins. It will not be possible to approve anyone until an active admin is created.")
    for admin in admins:
        try:
            send_approval_request_email(admin.email, admin.name, user.name, user.email)
            logger.info(f"Approval request email sent to {admin.email}")
        except Exception as e:
            logger.warning(f"Failed to send approval request to {admin.email}: {e}")

    create_audit_log(request, 'register', 'User', user.id, user=user, object_name=user.email,
                     changes={'role': user.role})
    return Response({
        'message': 'User registered. Please wait for approval from an admin.',
        'userId': user.id,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAdminRole])
def pending_users(request):
    """Accounts waiting for approval"""
    users = User.objects.filter(status=User.STATUS_PENDING).order_by('created_at')
    return Response(PendingUserSerializer(users, many=True).data)


@api_view(['GET'])
@permission_classes([IsAdminRole])
def user_list(request):
    """All accounts, newest first"""
    users = User.objects.order_by('-created_at')
    return Response(UserSerializer(users, many=True).data)


@api_view(['PUT'])
@permission_classes([IsAdminRole])
def user_update(request, user_id):
    """Change a user's role and/or status. Only valid, changed values are applied."""
    serializer = UserUpdateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    user = User.objects.filter(pk=user_id).first()
    if user is None:
        return Response({'message': 'User not found'}, status=status.HTTP_404_NOT_FOUND)

    role = serializer.validated_data.get('role')
    new_status = serializer.validated_data.get('status')
    changes = {}
    if role and role in ALLOWED_ROLES and role != user.role:
        changes['role'] = {'old': user.role, 'new': role}
        user.role = role
    if new_status and new_status in ALLOWED_STATUSES and new_status != user.status:
        changes['status'] = {'old': user.status, 'new': new_status}
        user.status = new_status

    if not changes:
        return Response({'message': 'No valid fields to update'})

    user.save()
    create_audit_log(request, 'account_update', 'User', user.id, changes=changes, object_name=user.email)

    try:
        send_account_update_email(user.email, user.name, user.role or 'User', user.status)
        logger.info(f"Account status update email sent to {user.email}")
    except Exception as e:
        logger.warning(f"Failed to send account update email to {user.email}: {e}")

    return Response({'message': 'User updated', 'user': UserSerializer(user).data})


@api_view(['POST'])
@permission_classes([IsActiveAccount])
def donor_edit(request):
    """
    Update a donor record and the account that used its previous email.

    Body: the donor `id`, the `old` email and the donor fields to change.
    Donors may only edit their own record.
    """
    try:
        donor_id = int(request.data.get('id'))
    except (TypeError, ValueError):
        return Response({'message': 'Donor ID must be an integer.'}, status=status.HTTP_400_BAD_REQUEST)

    donor = Donor.objects.filter(pk=donor_id).first()
    if donor is None:
        return Response({'message': 'Donor not found'}, status=status.HTTP_404_NOT_FOUND)
    if not is_admin_request(request) and donor.email.lower() != request.user.email.lower():
        return Response({'message': 'You can only edit your own donor profile.'}, status=status.HTTP_403_FORBIDDEN)

    old_email = (request.data.get('old') or '').strip()
    if old_email and old_email.lower() != donor.email.lower():
        return Response({'message': 'Old email does not match donor record.'}, status=status.HTTP_400_BAD_REQUEST)

    serializer = DonorSerializer(donor, data=request.data, partial=True)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    new_email = serializer.validated_data.get('email', donor.email)
    if is_admin_request(request):
        user = User.objects.filter(email__iexact=donor.email).first()
    else:
        user = request.user
    if user and User.objects.filter(email__iexact=new_email).exclude(pk=user.pk).exists():
        return Response({'message': 'Email already in use'}, status=status.HTTP_400_BAD_REQUEST)

    try:
        with transaction.atomic():
            donor = serializer.save()
            if user:
                user.name = donor.full_name
                user.email = donor.email
                user.save(update_fields=['name', 'email', 'updated_at'])
    except Exception:
        logger.exception(f"Error editing donor {donor_id}")
        return Response({'message': 'Error editing donor'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    create_audit_log(request, 'update', 'Donor', donor.id, object_name=donor.full_name,
                     changes={k: str(v) for k, v in serializer.validated_data.items()})
    return Response(DonorSerializer(donor).data)


@api_view(['GET'])
@permission_classes([IsActiveAccount])
def donor_me(request):
    """The caller's donor profile and their donated items"""
    profile = Donor.objects.filter(email__iexact=request.user.email).first()
    donations = DonatedItem.objects.filter(donor=profile) if profile else DonatedItem.objects.none()
    return Response({
        'profile': DonorSerializer(profile).data if profile else None,
        'donations': DonatedItemSerializer(donations.order_by('-date_donated'), many=True).data,
    })
