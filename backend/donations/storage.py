"""
Image storage for donated item photos.

Two backends, selected by settings.STORAGE_BACKEND:
- local: files are written under MEDIA_ROOT/UPLOADS_DIR and referenced by
  their public URL, PUBLIC_BASE_URL/uploads/<filename>
- azure: files are uploaded to Azure Blob Storage and referenced as
  "<container>/<filename>"; clients get read-only SAS URLs for them

Settings are read on every call so tests can switch backends with
override_settings.
"""
import logging
import re
from datetime import datetime, timedelta, timezone as dt_timezone
from pathlib import Path
from urllib.parse import quote

import requests
from azure.core.exceptions import AzureError
from azure.storage.blob import BlobServiceClient, BlobSasPermissions, ContentSettings, generate_blob_sas
from django.conf import settings

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
MAX_FILES = 5

FILE_TOO_LARGE_MESSAGE = 'File size is too large. Max file size allowed is 5MB.'
TOO_MANY_FILES_MESSAGE = f'Too many files. At most {MAX_FILES} images can be uploaded at once.'

UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]+')
WHITESPACE = re.compile(r'\s+')

EXTENSIONS_BY_MIME = {
    'image/jpeg': '.jpeg',
    'image/png': '.png',
    'image/gif': '.gif',
    'image/webp': '.webp',
}

MIME_BY_EXTENSION = {
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'webp': 'image/webp',
}


class StorageError(Exception):
    """Upload rejected or a stored image could not be read"""


def _storage_backend():
    return getattr(settings, 'STORAGE_BACKEND', 'azure').lower()


def _uploads_dir() -> Path:
    return Path(settings.MEDIA_ROOT) / getattr(settings, 'UPLOADS_DIR', 'uploads')


def _public_uploads_prefix() -> str:
    base_url = getattr(settings, 'PUBLIC_BASE_URL', 'http://localhost:5050').rstrip('/')
    return f"{base_url}/uploads/"


def _azure_container() -> str:
    return getattr(settings, 'AZURE_CONTAINER', 'mdma-dev')


def get_file_extension(mime_type: str) -> str:
    """File extension for an uploaded image's MIME type (.jpg when unknown)"""
    return EXTENSIONS_BY_MIME.get((mime_type or '').lower(), '.jpg')


def guess_mime_from_name(filename: str) -> str:
    ext = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
    return MIME_BY_EXTENSION.get(ext, 'application/octet-stream')


def make_safe_stamp(moment: datetime = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and no colons"""
    moment = (moment or datetime.now(dt_timezone.utc)).astimezone(dt_timezone.utc)
    stamp = moment.strftime('%Y-%m-%dT%H:%M:%S') + f'.{moment.microsecond // 1000:03d}Z'
    return stamp.replace(':', '-')


def make_safe_filename(name: str) -> str:
    """Replace characters that are illegal in filenames and collapse whitespace"""
    return WHITESPACE.sub('_', UNSAFE_FILENAME_CHARS.sub('-', name))


def item_image_name(item_id, uploaded_file) -> str:
    return f"item-{make_safe_stamp()}-{item_id}{get_file_extension(uploaded_file.content_type)}"


def validate_individual_file_size(files):
    """Raise StorageError when there are too many files or one is over 5MB"""
    if len(files) > MAX_FILES:
        raise StorageError(TOO_MANY_FILES_MESSAGE)
    for uploaded_file in files:
        if uploaded_file.size > MAX_FILE_SIZE:
            raise StorageError(FILE_TOO_LARGE_MESSAGE)


def get_blob_service_client() -> BlobServiceClient:
    connection_string = getattr(settings, 'AZURE_STORAGE_CONNECTION_STRING', '')
    if connection_string:
        return BlobServiceClient.from_connection_string(connection_string)
    account_name = getattr(settings, 'AZURE_STORAGE_ACCOUNT_NAME', '')
    account_key = getattr(settings, 'AZURE_STORAGE_ACCESS_KEY', '')
    if not account_name or not account_key:
        raise StorageError('Azure storage is not configured')
    return BlobServiceClient(
        account_url=f"https://{account_name}.blob.core.windows.net",
        credential=account_key,
    )


def _upload_local(uploaded_file, safe_name: str) -> str:
    directory = _uploads_dir()
    directory.mkdir(parents=True, exist_ok=True)
    with open(directory / safe_name, 'wb') as destination:
        for chunk in uploaded_file.chunks():
            destination.write(chunk)
    return f"{_public_uploads_prefix()}{safe_name}"


def _upload_azure(uploaded_file, safe_name: str) -> str:
    container = _azure_container()
    blob_client = get_blob_service_client().get_blob_client(container=container, blob=safe_name)
    uploaded_file.seek(0)
    blob_client.upload_blob(
        uploaded_file.read(),
        overwrite=True,
        content_settings=ContentSettings(content_type=uploaded_file.content_type),
    )
    # Items store the "container/blob" reference, not a URL
    return f"{container}/{safe_name}"


def upload_to_storage(uploaded_file, filename: str) -> str:
    """Store an uploaded file under a sanitized name and return its reference"""
    safe_name = make_safe_filename(filename)
    if _storage_backend() == 'local':
        reference = _upload_local(uploaded_file, safe_name)
    else:
        reference = _upload_azure(uploaded_file, safe_name)
    logger.info(f"Stored image {safe_name} ({uploaded_file.size} bytes)")
    return reference


def upload_item_images(item_id, files):
    """Upload each file for a donated item and return the references in order"""
    return [upload_to_storage(f, item_image_name(item_id, f)) for f in files]


def fetch_image(url: str):
    """
    Read a stored image back.

    Accepts a local public URL, an azure "container/blob" reference or any
    http(s) URL. Returns (bytes, mime_type); raises StorageError.
    """
    try:
        prefix = _public_uploads_prefix()
        if _storage_backend() == 'local' and url.startswith(prefix):
            relative = url[len(prefix):]
            directory = _uploads_dir().resolve()
            path = (directory / relative).resolve()
            if directory not in path.parents:
                raise StorageError(f'Invalid upload path: {relative}')
            return path.read_bytes(), guess_mime_from_name(relative)

        if not url.startswith('http'):
            container, _, blob_name = url.partition('/')
            blob_client = get_blob_service_client().get_blob_client(container=container, blob=blob_name)
            return blob_client.download_blob().readall(), guess_mime_from_name(blob_name)

        response = requests.get(url, timeout=30)
        response.raise_for_status()
        return response.content, response.headers.get('content-type', 'application/octet-stream')
    except StorageError:
        raise
    except (OSError, AzureError, requests.RequestException) as e:
        raise StorageError(f'Failed to fetch image {url}: {e}') from e


def generate_blob_sas_url(url: str) -> str:
    """
    Client-usable URL for a stored image reference.

    Local URLs are already public and returned unchanged, as are references
    when no account name and key are configured. Otherwise a read-only SAS
    URL is generated.
    """
    if _storage_backend() == 'local' or not url or url.startswith('http'):
        return url

    account_name = getattr(settings, 'AZURE_STORAGE_ACCOUNT_NAME', '')
    account_key = getattr(settings, 'AZURE_STORAGE_ACCESS_KEY', '')
    if not account_name or not account_key:
        return url

    if '/' in url:
        container, _, blob_name = url.partition('/')
    else:
        container, blob_name = _azure_container(), url

    expiry = datetime.now(dt_timezone.utc) + timedelta(days=getattr(settings, 'AZURE_SAS_EXPIRY_DAYS', 30))
    sas_token = generate_blob_sas(
        account_name=account_name,
        container_name=container,
        blob_name=blob_name,
        account_key=account_key,
        permission=BlobSasPermissions(read=True),
        expiry=expiry,
    )
    return f"https://{account_name}.blob.core.windows.net/{container}/{quote(blob_name)}?{sas_token}"


def fetch_sas_urls(urls):
    return [generate_blob_sas_url(url) for url in urls or []]
