import logging

from django.db import transaction
from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from backend.core.authentication import IsAdminRoleOrReadOnly
from backend.core.emails import send_donation_update_email
from backend.core.serializers import flatten_errors
from backend.core.utils import create_audit_log
from .image_analysis import analyze_uploaded_image
from .models import DonatedItem, DonatedItemStatus
from .serializers import DonatedItemDetailSerializer, DonatedItemStatusInputSerializer, DonatedItemStatusSerializer
from .storage import StorageError, fetch_sas_urls, upload_item_images, validate_individual_file_size
from .views import can_view_item

logger = logging.getLogger(__name__)


@api_view(['GET', 'POST'])
@permission_classes([IsAdminRoleOrReadOnly])
def donated_item_status(request, item_id):
    """
    GET: status history of an item, oldest first, with readable image URLs.
    POST (multipart, admin): move the item to `statusType`, append a history
    row with any `imageFiles`, and optionally email the donor.
    """
    item = DonatedItem.objects.select_related('donor').filter(pk=item_id).first()

    if request.method == 'GET':
        if item is None:
            return Response({'message': f'Donated item with ID {item_id} not found'},
                            status=status.HTTP_404_NOT_FOUND)
        if not can_view_item(request, item):
            return Response({'message': 'Access denied.'}, status=status.HTTP_403_FORBIDDEN)
        history = item.statuses.order_by('date_modified', 'id')
        serializer = DonatedItemStatusSerializer(history, many=True, context={'sign_urls': True})
        return Response(serializer.data)

    if not request.data.get('statusType'):
        return Response({'error': 'status is required'}, status=status.HTTP_400_BAD_REQUEST)

    serializer = DonatedItemStatusInputSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    files = request.FILES.getlist('imageFiles')
    try:
        validate_individual_file_size(files)
    except StorageError as e:
        return Response({'message': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    if item is None:
        return Response({'message': f'Donated item with ID {item_id} not found'}, status=status.HTTP_404_NOT_FOUND)

    data = serializer.validated_data
    previous_status = item.current_status
    try:
        image_urls = upload_item_images(item.id, files)
        with transaction.atomic():
            item.current_status = data['statusType']
            item.save(update_fields=['current_status', 'last_updated'])
            new_status = DonatedItemStatus.objects.create(
                donated_item=item,
                status_type=data['statusType'],
                date_modified=data.get('dateModified') or timezone.now(),
                image_urls=image_urls,
            )
    except Exception:
        logger.exception(f"Error updating status of donated item {item_id}")
        return Response({'message': 'Error updating donated item status'},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if data['informDonor'] and item.donor.email:
        try:
            send_donation_update_email(
                item.donor.email, item.donor.full_name, item.id,
                new_status.status_type, new_status.date_modified, fetch_sas_urls(image_urls),
            )
        except Exception as e:
            logger.error(f"Failed to email donor about item {item.id}: {e}")

    if files:
        analyze_uploaded_image(item, files[0], image_urls[0], opt_out=data['optOutAnalysis'])
        item.refresh_from_db()

    create_audit_log(request, 'status_change', 'DonatedItem', item.id, object_name=item.item_type,
                     changes={'status': {'old': previous_status, 'new': new_status.status_type},
                              'images': len(image_urls)})
    return Response({
        'message': 'Donated item status updated successfully',
        'updatedStatus': DonatedItemDetailSerializer(item).data,
        'newStatus': DonatedItemStatusSerializer(new_status).data,
    })
