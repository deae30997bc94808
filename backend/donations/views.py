import logging
from dataclasses import asdict

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from backend.core.authentication import IsActiveAccount, IsAdminRole, IsAdminRoleOrReadOnly, is_admin_request
from backend.core.exceptions import ValidationFailed
from backend.core.serializers import flatten_errors
from backend.core.utils import create_audit_log
from backend.donors.services import validate_donor
from backend.programs.services import validate_program
from .filters import DonatedItemFilter
from .image_analysis import (
    ImageAnalysisError, analyze_image_tags, analyze_uploaded_image, get_image_tags, is_configured,
)
from .models import DonatedItem, DonatedItemStatus
from .serializers import (
    DonatedItemInputSerializer, DonatedItemSerializer, DonatedItemDetailSerializer, DonatedItemStatusSerializer,
)
from .storage import StorageError, fetch_image, upload_item_images, validate_individual_file_size

logger = logging.getLogger(__name__)


def parse_item_id(raw_id):
    """int id from a URL segment, or None when it is not an integer"""
    try:
        return int(str(raw_id).strip())
    except (TypeError, ValueError):
        return None


def can_view_item(request, item):
    """Admins see every item; other accounts only items donated under their email"""
    if is_admin_request(request):
        return True
    return item.donor.email.lower() == (request.user.email or '').lower()


def item_queryset():
    return DonatedItem.objects.select_related('donor', 'program').prefetch_related('statuses')


@api_view(['GET', 'POST'])
@permission_classes([IsAdminRoleOrReadOnly])
def donated_item_list_create(request):
    """
    GET: items with donor, program and status history. Filters: status,
    category, donor, program, date_from, date_to, search.
    POST (multipart, admin): create an item from the form fields and up to
    five `imageFiles`; the first status row is "Received".
    """
    if request.method == 'GET':
        queryset = item_queryset()
        if not is_admin_request(request):
            queryset = queryset.filter(donor__email__iexact=request.user.email)
        filterset = DonatedItemFilter(request.query_params, queryset=queryset)
        if not filterset.is_valid():
            return Response({'message': flatten_errors(filterset.errors)}, status=status.HTTP_400_BAD_REQUEST)
        serializer = DonatedItemDetailSerializer(filterset.qs, many=True)
        return Response(serializer.data)

    serializer = DonatedItemInputSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    files = request.FILES.getlist('imageFiles')
    try:
        validate_individual_file_size(files)
    except StorageError as e:
        return Response({'message': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        donor = validate_donor(data['donorId'])
        program = validate_program(data.get('programId'))
    except ValidationFailed as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    # No rollback: an item created before a failed upload is kept
    try:
        item = DonatedItem.objects.create(donor=donor, program=program, **serializer.to_model_fields())
        image_urls = upload_item_images(item.id, files)
        first_status = DonatedItemStatus.objects.create(
            donated_item=item,
            status_type=DonatedItem.STATUS_RECEIVED,
            date_modified=item.date_donated,
            image_urls=image_urls,
        )
    except Exception:
        logger.exception("Error creating donated item")
        return Response({'message': 'Error creating donated item'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if files:
        analyze_uploaded_image(item, files[0], image_urls[0], opt_out=data['optOutAnalysis'])
        item.refresh_from_db()

    create_audit_log(request, 'create', 'DonatedItem', item.id, object_name=item.item_type,
                     changes={'donorId': donor.id, 'programId': program.id if program else None,
                              'images': len(image_urls)})
    return Response({
        'donatedItem': DonatedItemSerializer(item).data,
        'donatedItemStatus': DonatedItemStatusSerializer(first_status).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['GET', 'DELETE'])
@permission_classes([IsAdminRoleOrReadOnly])
def donated_item_detail(request, item_id):
    """Retrieve an item with its history, or delete it together with its statuses"""
    pk = parse_item_id(item_id)
    if pk is None:
        return Response({'error': 'Donated item ID must be an integer.'}, status=status.HTTP_400_BAD_REQUEST)

    item = item_queryset().filter(pk=pk).first()
    if item is None:
        return Response({'error': f'Donated item with ID {pk} not found'}, status=status.HTTP_404_NOT_FOUND)

    if request.method == 'GET':
        if not can_view_item(request, item):
            return Response({'message': 'Access denied.'}, status=status.HTTP_403_FORBIDDEN)
        return Response(DonatedItemDetailSerializer(item, context={'sign_urls': True}).data)

    deleted = DonatedItemSerializer(item).data
    try:
        item.delete()
    except Exception:
        logger.exception(f"Error deleting donated item {pk}")
        return Response({'message': 'Error deleting donated item'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info(f"Donated item deleted: {pk}")
    create_audit_log(request, 'delete', 'DonatedItem', pk, object_name=deleted['itemType'])
    return Response(deleted)


@api_view(['PUT'])
@permission_classes([IsAdminRole])
def donated_item_update_details(request, item_id):
    """Update the non-status details of an item"""
    pk = parse_item_id(item_id)
    if pk is None:
        return Response({'error': 'Donated item ID must be an integer.'}, status=status.HTTP_400_BAD_REQUEST)

    item = DonatedItem.objects.filter(pk=pk).first()
    if item is None:
        return Response({'error': f'Donated item with ID {pk} not found'}, status=status.HTTP_404_NOT_FOUND)

    serializer = DonatedItemInputSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        donor = validate_donor(data['donorId'])
        program = validate_program(data.get('programId'))
    except ValidationFailed as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    changes = {}
    for field, value in serializer.to_model_fields().items():
        if getattr(item, field) != value:
            changes[field] = {'old': str(getattr(item, field)), 'new': str(value)}
            setattr(item, field, value)
    if item.donor_id != donor.id:
        changes['donor'] = {'old': item.donor_id, 'new': donor.id}
    if item.program_id != (program.id if program else None):
        changes['program'] = {'old': item.program_id, 'new': program.id if program else None}
    item.donor = donor
    item.program = program

    try:
        item.save()
    except Exception:
        logger.exception(f"Error updating donated item details {pk}")
        return Response({'message': 'Error updating donated item details'},
                        status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    logger.info(f"Donated item updated: {pk}")
    create_audit_log(request, 'update', 'DonatedItem', pk, object_name=item.item_type, changes=changes)
    return Response(DonatedItemSerializer(item).data)


@api_view(['GET'])
@permission_classes([IsActiveAccount])
def donated_item_tags(request, item_id):
    """AI tags stored for an item; an unknown id has no tags"""
    pk = parse_item_id(item_id)
    if pk is None:
        return Response({'message': 'Invalid donated item ID'}, status=status.HTTP_400_BAD_REQUEST)
    item = DonatedItem.objects.select_related('donor').filter(pk=pk).first()
    if item is not None and not can_view_item(request, item):
        return Response({'message': 'Access denied.'}, status=status.HTTP_403_FORBIDDEN)
    return Response({'donatedItemId': pk, 'tags': get_image_tags(pk)})


@api_view(['POST'])
@permission_classes([IsAdminRole])
def donated_item_reanalyze(request, item_id):
    """Run AI tagging again on the item's most recent photo"""
    pk = parse_item_id(item_id)
    if pk is None:
        return Response({'message': 'Invalid donated item ID'}, status=status.HTTP_400_BAD_REQUEST)

    item = DonatedItem.objects.filter(pk=pk).first()
    if item is None:
        return Response({'error': f'Donated item with ID {pk} not found'}, status=status.HTTP_404_NOT_FOUND)

    image_ref = latest_image_reference(item)
    if not image_ref:
        return Response({'message': 'No image available for analysis'}, status=status.HTTP_400_BAD_REQUEST)
    if not is_configured():
        return Response({'message': 'Image analysis is not configured'}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    try:
        image_bytes, mime_type = fetch_image(image_ref)
        result = analyze_image_tags(image_bytes, mime_type, item, image_ref)
    except (StorageError, ImageAnalysisError) as e:
        logger.error(f"Reanalysis failed for item {pk}: {e}")
        return Response({'message': 'Image analysis failed'}, status=status.HTTP_502_BAD_GATEWAY)

    create_audit_log(request, 'reanalyze', 'DonatedItem', pk, object_name=item.item_type,
                     changes={'imagePath': image_ref, 'tags': len(result.tags)})
    return Response({'donatedItemId': pk, 'tags': [asdict(tag) for tag in result.tags]})


def latest_image_reference(item):
    """Storage reference of the newest photo in an item's history, or None"""
    statuses = item.statuses.order_by('-date_modified', '-id')
    for item_status in statuses:
        if item_status.image_urls:
            return item_status.image_urls[0]
    return None
