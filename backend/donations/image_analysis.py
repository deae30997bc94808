"""
AI tagging of donated item photos.

Photos are sent to the Gemini generateContent REST endpoint with a short
triage prompt. The comma-separated answer is split into tags, bucketed by
keyword into item type, damage, condition or other, and saved on the item's
analysis_metadata.
"""
import base64
import logging
import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone as dt_timezone
from typing import List, Optional

import requests
from django.conf import settings

from .models import DonatedItem

logger = logging.getLogger(__name__)

ANALYSIS_VERSION = 2
MAX_TAGS = 15

ANALYSIS_PROMPT = """Analyze this donated item image and provide a concise, comma-separated list of terms covering:
1) item type/category (e.g., bicycle, computer)
2) condition (e.g., used, good, poor)
3) visible damage (e.g., scratch, dent, rust, tear)
4) key characteristics (e.g., color, material, notable accessories)
Keep it short and practical for donation triage."""

ITEM_TYPE_KEYWORDS = [
    'furniture', 'chair', 'table', 'desk', 'bed', 'cabinet', 'shelf', 'clothing', 'textiles',
    'bedding', 'electronics', 'appliance', 'kitchenware', 'tool', 'book', 'lamp', 'sofa',
    'bicycle', 'bike', 'computer', 'laptop',
]
DAMAGE_KEYWORDS = [
    'damage', 'damaged', 'broken', 'crack', 'cracked', 'dent', 'stain', 'stained', 'tear', 'torn',
    'rust', 'scratch', 'scratched', 'wear', 'worn', 'chipped', 'bent',
]
CONDITION_KEYWORDS = [
    'new', 'excellent', 'good', 'fair', 'poor', 'used', 'vintage', 'refurbished', 'mint', 'like-new',
]

# Checked in order; the first matching bucket wins
TAG_BUCKETS = [
    ('item_type', ITEM_TYPE_KEYWORDS, 0.85),
    ('damage', DAMAGE_KEYWORDS, 0.8),
    ('condition', CONDITION_KEYWORDS, 0.8),
]
OTHER_CONFIDENCE = 0.75

TERM_SEPARATORS = re.compile(r'[,.;\n]')


class ImageAnalysisError(Exception):
    """The image could not be analysed"""


@dataclass
class ImageTag:
    description: str
    confidence: float
    category: str  # item_type | condition | damage | other


@dataclass
class AnalysisResult:
    tags: List[ImageTag] = field(default_factory=list)
    raw_response: str = ''
    analysis_timestamp: datetime = field(default_factory=lambda: datetime.now(dt_timezone.utc))
    opted_out: bool = False


def is_configured():
    return bool(getattr(settings, 'GOOGLE_GEMINI_API_KEY', ''))


def _classify(term):
    for category, keywords, confidence in TAG_BUCKETS:
        if any(keyword in term for keyword in keywords):
            return category, confidence
    return 'other', OTHER_CONFIDENCE


def parse_analysis_response(text: str) -> List[ImageTag]:
    """Turn the model's comma-separated answer into at most 15 tags"""
    terms = []
    for term in TERM_SEPARATORS.split((text or '').lower()):
        term = term.strip()
        if 0 < len(term) < 80 and term not in terms:
            terms.append(term)

    tags = {}
    for term in terms:
        category, confidence = _classify(term)
        description = term[0].upper() + term[1:]
        # Later duplicates replace earlier ones but keep the first position
        tags[description.lower()] = ImageTag(description, confidence, category)
    return list(tags.values())[:MAX_TAGS]


def _request_model(model: str, image_b64: str, mime_type: str) -> str:
    base_url = getattr(settings, 'GEMINI_API_URL', 'https://generativelanguage.googleapis.com/v1beta').rstrip('/')
    payload = {
        'contents': [{
            'role': 'user',
            'parts': [
                {'text': ANALYSIS_PROMPT},
                {'inline_data': {'mime_type': mime_type, 'data': image_b64}},
            ],
        }],
    }
    response = requests.post(
        f"{base_url}/models/{model}:generateContent",
        params={'key': settings.GOOGLE_GEMINI_API_KEY},
        json=payload,
        headers={'Content-Type': 'application/json'},
        timeout=getattr(settings, 'GEMINI_TIMEOUT', 30),
    )
    response.raise_for_status()
    data = response.json()
    try:
        candidates = data.get('candidates') or []
        if not candidates:
            return 'No description available'
        parts = (candidates[0].get('content') or {}).get('parts') or []
        text = ''.join(part.get('text') or '' for part in parts)
    except (AttributeError, TypeError, KeyError, IndexError) as e:
        raise ImageAnalysisError(f"Unexpected response shape from model \"{model}\": {e}")
    return text or 'No description available'


def save_tags(item: DonatedItem, tags: List[ImageTag], image_ref: str):
    item.analysis_metadata = {
        'tags': [asdict(tag) for tag in tags],
        'imagePath': image_ref,
        'analyzedAt': datetime.now(dt_timezone.utc).isoformat().replace('+00:00', 'Z'),
        'version': ANALYSIS_VERSION,
    }
    # last_updated is left alone; tagging is not an edit of the item
    DonatedItem.objects.filter(pk=item.pk).update(analysis_metadata=item.analysis_metadata)


def analyze_image_tags(image_bytes: bytes, mime_type: str, item: DonatedItem, image_ref: str,
                       opt_out: bool = False) -> AnalysisResult:
    """
    Tag one image of a donated item and store the tags on the item.

    Tries each model in settings.GEMINI_MODELS in turn and raises
    ImageAnalysisError once all of them have failed.
    """
    result = AnalysisResult(opted_out=opt_out)
    if opt_out:
        return result
    if not is_configured():
        raise ImageAnalysisError('GOOGLE_GEMINI_API_KEY is missing')
    if not image_bytes:
        raise ImageAnalysisError(f'Image is empty: {image_ref}')

    image_b64 = base64.b64encode(image_bytes).decode('ascii')
    last_error: Optional[Exception] = None

    for model in getattr(settings, 'GEMINI_MODELS', ['gemini-2.0-flash', 'gemini-1.5-flash', 'gemini-1.5-pro']):
        try:
            text = _request_model(model, image_b64, mime_type)
        except (requests.RequestException, ValueError, ImageAnalysisError) as e:
            logger.warning(f"[imageAnalysis] Model \"{model}\" failed; trying next: {e}")
            last_error = e
            continue
        result.raw_response = text
        result.tags = parse_analysis_response(text)
        save_tags(item, result.tags, image_ref)
        logger.info(f"[imageAnalysis] Success with model \"{model}\" for item {item.pk}: {len(result.tags)} tags")
        return result

    raise ImageAnalysisError(f"Image analysis failed: {last_error if last_error else 'Unknown error'}")


def analyze_uploaded_image(item: DonatedItem, uploaded_file, image_ref: str, opt_out: bool = False):
    """
    Tag a photo that was just uploaded for item.

    Skipped when opted out or no API key is configured. Analysis failures are
    logged and never propagate into the upload request.
    """
    if opt_out or not is_configured():
        return None
    try:
        uploaded_file.seek(0)
        return analyze_image_tags(uploaded_file.read(), uploaded_file.content_type, item, image_ref)
    except ImageAnalysisError as e:
        logger.warning(f"[imageAnalysis] Tagging failed for item {item.pk}: {e}")
        return None
    except Exception:
        logger.exception(f"[imageAnalysis] Unexpected error tagging item {item.pk}")
        return None


def get_image_tags(item_id) -> list:
    """Stored tags for an item, or [] when it was never analysed"""
    metadata = DonatedItem.objects.filter(pk=item_id).values_list('analysis_metadata', flat=True).first()
    if not metadata:
        return []
    return metadata.get('tags') or []
