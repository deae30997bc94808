import logging
from pathlib import Path

from django.conf import settings
from django.core.cache import cache
from django.http import HttpResponse
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from backend.core.authentication import IsActiveAccount
from backend.donations.models import DonatedItem
from backend.donations.views import parse_item_id
from .label_generator import CONTENT_TYPES, FORMAT_PNG, normalize_format, render_barcode, render_label

logger = logging.getLogger(__name__)

BARCODE_CACHE_TTL = 60 * 60 * 24  # 1 day


def get_barcode(value, fmt):
    """Rendered barcode bytes, from cache when available"""
    cache_key = f'barcode:{fmt}:{value}'
    content = cache.get(cache_key)
    if content is None:
        content = render_barcode(value, fmt)
        cache.set(cache_key, content, BARCODE_CACHE_TTL)
    return content


def save_barcode(value, fmt, content):
    directory = Path(settings.BARCODE_STORAGE_DIR)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / f'{value}.{fmt}').write_bytes(content)


@api_view(['GET'])
@permission_classes([IsActiveAccount])
def barcode_view(request, donated_item_id=''):
    """
    Code128 barcode for a donated item id.

    Query params:
        format: png (default) or svg; other values fall back to png
    """
    value = (donated_item_id or '').strip()
    if not value:
        return Response({'message': 'donatedItemId is required'}, status=status.HTTP_400_BAD_REQUEST)

    fmt = normalize_format(request.query_params.get('format'))
    try:
        content = get_barcode(value, fmt)
    except Exception:
        logger.exception(f"Barcode generation error for '{value}'")
        return Response({'message': 'Failed to generate barcode'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    if getattr(settings, 'SAVE_BARCODES', False):
        try:
            save_barcode(value, fmt, content)
        except OSError as e:
            logger.warning(f"Could not save barcode {value}.{fmt}: {e}")

    return HttpResponse(content, content_type=CONTENT_TYPES[fmt])


@api_view(['GET'])
@permission_classes([IsActiveAccount])
def label_view(request, donated_item_id):
    """Printable PNG label for a donated item"""
    pk = parse_item_id(donated_item_id)
    if pk is None:
        return Response({'error': 'Donated item ID must be an integer.'}, status=status.HTTP_400_BAD_REQUEST)

    item = DonatedItem.objects.select_related('donor').filter(pk=pk).first()
    if item is None:
        return Response({'error': f'Donated item with ID {pk} not found'}, status=status.HTTP_404_NOT_FOUND)

    title = f'{item.item_type} - {item.category}'
    footer = f'{item.donor.full_name} {item.date_donated:%Y-%m-%d}'
    content = render_label(str(item.id), title, footer)
    return HttpResponse(content, content_type=CONTENT_TYPES[FORMAT_PNG])
