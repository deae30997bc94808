"""
Test suite for donated items: storage helpers, AI tagging, item and status endpoints
"""
import shutil
import tempfile
from datetime import datetime, timezone as dt_timezone
from io import StringIO
from pathlib import Path
from unittest.mock import MagicMock, patch

import requests
from django.core import mail
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.test import TestCase, override_settings
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.donations.image_analysis import (
    ImageAnalysisError, analyze_image_tags, get_image_tags, parse_analysis_response,
)
from backend.donations.models import DonatedItem, DonatedItemStatus
from backend.donations.storage import (
    FILE_TOO_LARGE_MESSAGE, MAX_FILE_SIZE, StorageError, fetch_image, generate_blob_sas_url,
    get_file_extension, make_safe_filename, make_safe_stamp, upload_to_storage, validate_individual_file_size,
)

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


def png_upload(name='photo.png'):
    return SimpleUploadedFile(name, PNG_BYTES, content_type='image/png')


def gemini_response(text):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = {'candidates': [{'content': {'parts': [{'text': text}]}}]}
    return response


def malformed_gemini_response():
    # parts holds bare strings instead of {'text': ...} objects
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = {'candidates': [{'content': {'parts': ['plain text']}}]}
    return response


class LocalStorageMixin:
    """Run against the local storage backend in a throwaway MEDIA_ROOT"""

    def setUp(self):
        super().setUp()
        self.media_root = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.media_root, ignore_errors=True)
        storage_settings = override_settings(
            STORAGE_BACKEND='local',
            MEDIA_ROOT=self.media_root,
            UPLOADS_DIR='uploads',
            PUBLIC_BASE_URL='http://localhost:5050',
            GOOGLE_GEMINI_API_KEY='',
        )
        storage_settings.enable()
        self.addCleanup(storage_settings.disable)


class StorageHelperTests(LocalStorageMixin, TestCase):

    def test_file_extension_by_mime(self):
        self.assertEqual(get_file_extension('image/jpeg'), '.jpeg')
        self.assertEqual(get_file_extension('image/png'), '.png')
        self.assertEqual(get_file_extension('image/gif'), '.gif')
        self.assertEqual(get_file_extension('image/webp'), '.webp')
        self.assertEqual(get_file_extension('application/pdf'), '.jpg')

    def test_safe_stamp_has_no_colons(self):
        stamp = make_safe_stamp(datetime(2024, 5, 10, 8, 30, 15, 123000, tzinfo=dt_timezone.utc))
        self.assertEqual(stamp, '2024-05-10T08-30-15.123Z')

    def test_safe_filename(self):
        self.assertEqual(make_safe_filename('my  photo<1>?.png'), 'my_photo-1-.png')
        self.assertEqual(make_safe_filename('a/b\\c.png'), 'a-b-c.png')

    def test_file_size_limit(self):
        too_big = SimpleUploadedFile('big.png', b'0' * (MAX_FILE_SIZE + 1), content_type='image/png')
        with self.assertRaises(StorageError) as ctx:
            validate_individual_file_size([png_upload(), too_big])
        self.assertEqual(str(ctx.exception), FILE_TOO_LARGE_MESSAGE)

    def test_file_count_limit(self):
        with self.assertRaises(StorageError):
            validate_individual_file_size([png_upload() for _ in range(6)])
        validate_individual_file_size([png_upload() for _ in range(5)])

    def test_local_upload_and_fetch(self):
        url = upload_to_storage(png_upload(), 'item test.png')
        self.assertEqual(url, 'http://localhost:5050/uploads/item_test.png')
        self.assertTrue((Path(self.media_root) / 'uploads' / 'item_test.png').exists())

        data, mime = fetch_image(url)
        self.assertEqual(data, PNG_BYTES)
        self.assertEqual(mime, 'image/png')

    def test_fetch_rejects_path_outside_uploads(self):
        with self.assertRaises(StorageError):
            fetch_image('http://localhost:5050/uploads/../secret.txt')

    def test_local_urls_are_not_signed(self):
        url = 'http://localhost:5050/uploads/item.png'
        self.assertEqual(generate_blob_sas_url(url), url)

    @override_settings(STORAGE_BACKEND='azure', AZURE_STORAGE_ACCOUNT_NAME='', AZURE_STORAGE_ACCESS_KEY='')
    def test_azure_reference_unchanged_without_credentials(self):
        self.assertEqual(generate_blob_sas_url('mdma-dev/item.png'), 'mdma-dev/item.png')

    @override_settings(STORAGE_BACKEND='azure', AZURE_STORAGE_ACCOUNT_NAME='acct',
                       AZURE_STORAGE_ACCESS_KEY='a2V5a2V5a2V5a2V5')
    def test_azure_reference_signed(self):
        url = generate_blob_sas_url('mdma-dev/item.png')
        self.assertTrue(url.startswith('https://acct.blob.core.windows.net/mdma-dev/item.png?'))
        self.assertIn('sp=r', url)


class ParseAnalysisResponseTests(TestCase):

    def test_terms_are_bucketed(self):
        tags = parse_analysis_response('Laptop, used, scratch on lid, silver')
        self.assertEqual(
            [(t.description, t.category, t.confidence) for t in tags],
            [
                ('Laptop', 'item_type', 0.85),
                ('Used', 'condition', 0.8),
                ('Scratch on lid', 'damage', 0.8),
                ('Silver', 'other', 0.75),
            ],
        )

    def test_item_type_checked_before_damage(self):
        tags = parse_analysis_response('broken chair')
        self.assertEqual(tags[0].category, 'item_type')

    def test_duplicates_removed(self):
        tags = parse_analysis_response('Good; good\nGOOD. fair')
        self.assertEqual([t.description for t in tags], ['Good', 'Fair'])

    def test_blank_and_long_terms_dropped(self):
        tags = parse_analysis_response(',, ,' + 'x' * 80 + ', red')
        self.assertEqual([t.description for t in tags], ['Red'])

    def test_capped_at_fifteen(self):
        tags = parse_analysis_response(', '.join(f'term{i}' for i in range(20)))
        self.assertEqual(len(tags), 15)
        self.assertEqual(tags[0].description, 'Term0')


@override_settings(GOOGLE_GEMINI_API_KEY='test-key',
                   GEMINI_MODELS=['gemini-2.0-flash', 'gemini-1.5-flash', 'gemini-1.5-pro'])
class AnalyzeImageTagsTests(TestCase):

    def setUp(self):
        self.item = TestDataFactory.create_item()

    @patch('backend.donations.image_analysis.requests.post')
    def test_tags_saved_on_item(self, mock_post):
        mock_post.return_value = gemini_response('Bicycle, rust, used')
        result = analyze_image_tags(PNG_BYTES, 'image/png', self.item, 'mdma-dev/item.png')

        self.assertEqual(len(result.tags), 3)
        self.item.refresh_from_db()
        metadata = self.item.analysis_metadata
        self.assertEqual(metadata['version'], 2)
        self.assertEqual(metadata['imagePath'], 'mdma-dev/item.png')
        self.assertEqual(metadata['tags'][0], {'description': 'Bicycle', 'confidence': 0.85, 'category': 'item_type'})
        self.assertEqual(get_image_tags(self.item.id), metadata['tags'])

        url = mock_post.call_args[0][0]
        self.assertTrue(url.endswith('/models/gemini-2.0-flash:generateContent'))
        payload = mock_post.call_args[1]['json']
        self.assertEqual(payload['contents'][0]['parts'][1]['inline_data']['mime_type'], 'image/png')

    @patch('backend.donations.image_analysis.requests.post')
    def test_falls_back_to_next_model(self, mock_post):
        mock_post.side_effect = [requests.ConnectionError('down'), gemini_response('Desk, worn')]
        result = analyze_image_tags(PNG_BYTES, 'image/png', self.item, 'ref')
        self.assertEqual([t.description for t in result.tags], ['Desk', 'Worn'])
        self.assertEqual(mock_post.call_count, 2)
        self.assertIn('gemini-1.5-flash', mock_post.call_args[0][0])

    @patch('backend.donations.image_analysis.requests.post')
    def test_all_models_failing_raises(self, mock_post):
        mock_post.side_effect = requests.Timeout('slow')
        with self.assertRaises(ImageAnalysisError):
            analyze_image_tags(PNG_BYTES, 'image/png', self.item, 'ref')
        self.assertEqual(mock_post.call_count, 3)
        self.item.refresh_from_db()
        self.assertIsNone(self.item.analysis_metadata)

    @patch('backend.donations.image_analysis.requests.post')
    def test_malformed_reply_tries_next_model(self, mock_post):
        mock_post.side_effect = [malformed_gemini_response(), gemini_response('Lamp')]
        result = analyze_image_tags(PNG_BYTES, 'image/png', self.item, 'ref')
        self.assertEqual([t.description for t in result.tags], ['Lamp'])
        self.assertEqual(mock_post.call_count, 2)

    @patch('backend.donations.image_analysis.requests.post')
    def test_malformed_reply_from_every_model_raises(self, mock_post):
        mock_post.return_value = malformed_gemini_response()
        with self.assertRaises(ImageAnalysisError):
            analyze_image_tags(PNG_BYTES, 'image/png', self.item, 'ref')
        self.assertEqual(mock_post.call_count, 3)

    @patch('backend.donations.image_analysis.requests.post')
    def test_opt_out_skips_call(self, mock_post):
        result = analyze_image_tags(PNG_BYTES, 'image/png', self.item, 'ref', opt_out=True)
        self.assertTrue(result.opted_out)
        self.assertEqual(result.tags, [])
        mock_post.assert_not_called()

    @override_settings(GOOGLE_GEMINI_API_KEY='')
    def test_missing_key_raises(self):
        with self.assertRaises(ImageAnalysisError):
            analyze_image_tags(PNG_BYTES, 'image/png', self.item, 'ref')

    def test_no_tags_for_unanalysed_item(self):
        self.assertEqual(get_image_tags(self.item.id), [])
        self.assertEqual(get_image_tags(999999), [])


class DonatedItemAPITests(LocalStorageMixin, TestCase):
    """Test donated item endpoints"""

    def setUp(self):
        super().setUp()
        self.admin = TestDataFactory.create_admin()
        self.donor = TestDataFactory.create_donor(email='giver@test.com')
        self.program = TestDataFactory.create_program()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)
        self.payload = {
            'itemType': '  Laptop ',
            'currentStatus': DonatedItem.STATUS_RECEIVED,
            'donorId': str(self.donor.id),
            'programId': str(self.program.id),
            'dateDonated': '2024-05-10T15:30:00Z',
            'category': 'Electronics',
            'quantity': '2',
        }

    def test_create_item_with_image(self):
        self.payload['imageFiles'] = [png_upload()]
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        item = DonatedItem.objects.get(pk=response.data['donatedItem']['id'])
        self.assertEqual(item.item_type, 'Laptop')
        self.assertEqual(item.quantity, 2)
        self.assertEqual(item.date_donated, datetime(2024, 5, 10, tzinfo=dt_timezone.utc))

        first_status = response.data['donatedItemStatus']
        self.assertEqual(first_status['statusType'], DonatedItem.STATUS_RECEIVED)
        self.assertEqual(len(first_status['imageUrls']), 1)
        self.assertTrue(first_status['imageUrls'][0].startswith('http://localhost:5050/uploads/item-'))
        self.assertTrue(first_status['imageUrls'][0].endswith(f'-{item.id}.png'))
        history = item.statuses.get()
        self.assertEqual(history.date_modified, item.date_donated)
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='DonatedItem').exists())

    def test_create_item_without_program(self):
        self.payload['programId'] = ''
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(response.data['donatedItem']['programId'])
        self.assertEqual(response.data['donatedItemStatus']['imageUrls'], [])

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_create_item_runs_tagging(self, mock_post):
        mock_post.return_value = gemini_response('Laptop, good')
        self.payload['imageFiles'] = [png_upload()]
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        tags = response.data['donatedItem']['analysisMetadata']['tags']
        self.assertEqual([t['description'] for t in tags], ['Laptop', 'Good'])

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_create_item_tagging_failure_is_ignored(self, mock_post):
        mock_post.side_effect = requests.ConnectionError('down')
        self.payload['imageFiles'] = [png_upload()]
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(response.data['donatedItem']['analysisMetadata'])

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_create_item_with_malformed_model_reply(self, mock_post):
        mock_post.return_value = malformed_gemini_response()
        self.payload['imageFiles'] = [png_upload()]
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertIsNone(response.data['donatedItem']['analysisMetadata'])

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.analyze_image_tags', side_effect=RuntimeError('boom'))
    def test_create_item_unexpected_tagging_error_is_ignored(self, mock_analyze):
        self.payload['imageFiles'] = [png_upload()]
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        mock_analyze.assert_called_once()

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_create_item_opt_out(self, mock_post):
        self.payload['imageFiles'] = [png_upload()]
        self.payload['optOutAnalysis'] = 'true'
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        mock_post.assert_not_called()

    def test_create_item_validation_errors_reported_together(self):
        self.payload['itemType'] = ''
        self.payload['quantity'] = '0'
        self.payload['currentStatus'] = 'Lost'
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        message = response.data['message']
        self.assertIn('itemType', message)
        self.assertIn('quantity', message)
        self.assertIn('currentStatus', message)
        self.assertFalse(DonatedItem.objects.exists())

    def test_create_item_unknown_donor(self):
        self.payload['donorId'] = '9999'
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Donor ID 9999 is not valid or does not exist.')

    def test_create_item_unknown_program(self):
        self.payload['programId'] = '9999'
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Program ID 9999 is not valid or does not exist.')

    def test_create_item_file_too_large(self):
        self.payload['imageFiles'] = [
            SimpleUploadedFile('big.png', b'0' * (MAX_FILE_SIZE + 1), content_type='image/png'),
        ]
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], FILE_TOO_LARGE_MESSAGE)

    def test_create_item_requires_admin(self):
        user = TestDataFactory.create_user()
        self.client.authenticate_user(user)
        response = self.client.post('/donatedItem/', self.payload, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_items_admin_sees_all(self):
        TestDataFactory.create_item(donor=self.donor)
        TestDataFactory.create_item(donor=TestDataFactory.create_donor())
        response = self.client.get('/donatedItem/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)
        self.assertEqual(response.data[0]['donor']['firstName'], 'Jane')

    def test_list_items_donor_sees_own(self):
        own = TestDataFactory.create_item(donor=self.donor)
        TestDataFactory.create_item(donor=TestDataFactory.create_donor())
        user = TestDataFactory.create_user(email='GIVER@test.com')
        self.client.authenticate_user(user)
        response = self.client.get('/donatedItem/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([i['id'] for i in response.data], [own.id])

    def test_list_items_statuses_ordered(self):
        item = TestDataFactory.create_item(donor=self.donor)
        TestDataFactory.create_status(item, DonatedItem.STATUS_SOLD,
                                      date_modified=datetime(2024, 6, 1, tzinfo=dt_timezone.utc))
        TestDataFactory.create_status(item, DonatedItem.STATUS_RECEIVED)
        response = self.client.get('/donatedItem/')
        statuses = [s['statusType'] for s in response.data[0]['statuses']]
        self.assertEqual(statuses, [DonatedItem.STATUS_RECEIVED, DonatedItem.STATUS_SOLD])

    def test_list_items_filters(self):
        TestDataFactory.create_item(donor=self.donor, item_type='Bicycle', category='Sports',
                                    current_status=DonatedItem.STATUS_SOLD, program=self.program)
        TestDataFactory.create_item(donor=self.donor, date_donated=datetime(2023, 1, 1, tzinfo=dt_timezone.utc))

        response = self.client.get('/donatedItem/', {'status': DonatedItem.STATUS_SOLD})
        self.assertEqual([i['itemType'] for i in response.data], ['Bicycle'])

        response = self.client.get('/donatedItem/', {'category': 'sports'})
        self.assertEqual(len(response.data), 1)

        response = self.client.get('/donatedItem/', {'program': self.program.id})
        self.assertEqual(len(response.data), 1)

        response = self.client.get('/donatedItem/', {'date_from': '2024-01-01'})
        self.assertEqual([i['itemType'] for i in response.data], ['Bicycle'])

        response = self.client.get('/donatedItem/', {'search': 'jane laptop'})
        self.assertEqual([i['itemType'] for i in response.data], ['Laptop'])

    def test_list_items_invalid_filter(self):
        response = self.client.get('/donatedItem/', {'status': 'Lost'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_requires_token(self):
        self.client.logout()
        response = self.client.get('/donatedItem/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_get_item(self):
        item = TestDataFactory.create_item(donor=self.donor, program=self.program)
        TestDataFactory.create_status(item, image_urls=['http://localhost:5050/uploads/a.png'])
        response = self.client.get(f'/donatedItem/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['program']['name'], self.program.name)
        self.assertEqual(response.data['statuses'][0]['imageUrls'], ['http://localhost:5050/uploads/a.png'])

    def test_get_item_not_integer(self):
        response = self.client.get('/donatedItem/abc/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Donated item ID must be an integer.')

    def test_get_item_not_found(self):
        response = self.client.get('/donatedItem/4242/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Donated item with ID 4242 not found')

    def test_get_item_of_other_donor_denied(self):
        item = TestDataFactory.create_item(donor=self.donor)
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get(f'/donatedItem/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_update_details(self):
        item = TestDataFactory.create_item(donor=self.donor)
        other_donor = TestDataFactory.create_donor(first_name='Sam')
        self.payload['donorId'] = other_donor.id
        self.payload['itemType'] = 'Tablet'
        response = self.client.put(f'/donatedItem/details/{item.id}/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        item.refresh_from_db()
        self.assertEqual(item.item_type, 'Tablet')
        self.assertEqual(item.donor, other_donor)
        self.assertEqual(item.program, self.program)
        self.assertEqual(item.statuses.count(), 0)

    def test_update_details_not_found(self):
        response = self.client.put('/donatedItem/details/4242/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_delete_item_cascades_statuses(self):
        item = TestDataFactory.create_item(donor=self.donor)
        TestDataFactory.create_status(item)
        response = self.client.delete(f'/donatedItem/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], item.id)
        self.assertFalse(DonatedItem.objects.filter(pk=item.id).exists())
        self.assertFalse(DonatedItemStatus.objects.exists())

    def test_delete_requires_admin(self):
        item = TestDataFactory.create_item(donor=self.donor)
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.delete(f'/donatedItem/{item.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_tags(self):
        tags = [{'description': 'Laptop', 'confidence': 0.85, 'category': 'item_type'}]
        item = TestDataFactory.create_item(donor=self.donor, analysis_metadata={'tags': tags, 'version': 2})
        response = self.client.get(f'/donatedItem/{item.id}/tags/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, {'donatedItemId': item.id, 'tags': tags})

        response = self.client.get('/donatedItem/abc/tags/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Invalid donated item ID')

    def test_tags_of_other_donor_denied(self):
        tags = [{'description': 'Laptop', 'confidence': 0.85, 'category': 'item_type'}]
        item = TestDataFactory.create_item(donor=self.donor, analysis_metadata={'tags': tags, 'version': 2})
        self.client.authenticate_user(TestDataFactory.create_user(email='stranger@test.com'))
        response = self.client.get(f'/donatedItem/{item.id}/tags/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.authenticate_user(TestDataFactory.create_user(email='giver@test.com'))
        response = self.client.get(f'/donatedItem/{item.id}/tags/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['tags'], tags)

    def test_reanalyze_without_image(self):
        item = TestDataFactory.create_item(donor=self.donor)
        TestDataFactory.create_status(item)
        response = self.client.post(f'/donatedItem/{item.id}/reanalyze/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_reanalyze_uses_latest_image(self, mock_post):
        mock_post.return_value = gemini_response('Chair, fair')
        item = TestDataFactory.create_item(donor=self.donor)
        old_url = upload_to_storage(png_upload(), 'old.png')
        new_url = upload_to_storage(png_upload(), 'new.png')
        TestDataFactory.create_status(item, image_urls=[old_url])
        TestDataFactory.create_status(item, DonatedItem.STATUS_REFURBISHED,
                                      date_modified=datetime(2024, 7, 1, tzinfo=dt_timezone.utc),
                                      image_urls=[new_url])

        response = self.client.post(f'/donatedItem/{item.id}/reanalyze/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([t['description'] for t in response.data['tags']], ['Chair', 'Fair'])
        item.refresh_from_db()
        self.assertEqual(item.analysis_metadata['imagePath'], new_url)

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_reanalyze_ai_failure(self, mock_post):
        mock_post.side_effect = requests.ConnectionError('down')
        item = TestDataFactory.create_item(donor=self.donor)
        TestDataFactory.create_status(item, image_urls=[upload_to_storage(png_upload(), 'a.png')])
        response = self.client.post(f'/donatedItem/{item.id}/reanalyze/')
        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)


class DonatedItemStatusAPITests(LocalStorageMixin, TestCase):
    """Test status history endpoints"""

    def setUp(self):
        super().setUp()
        self.admin = TestDataFactory.create_admin()
        self.donor = TestDataFactory.create_donor(email='giver@test.com')
        self.item = TestDataFactory.create_item(donor=self.donor)
        TestDataFactory.create_status(self.item)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)
        self.url = f'/donatedItem/status/{self.item.id}/'

    def test_add_status(self):
        response = self.client.post(self.url, {
            'statusType': DonatedItem.STATUS_IN_STORAGE,
            'dateModified': '2024-04-02T10:00:00Z',
            'imageFiles': [png_upload()],
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Donated item status updated successfully')
        self.assertEqual(response.data['updatedStatus']['currentStatus'], DonatedItem.STATUS_IN_STORAGE)
        self.assertEqual(response.data['newStatus']['statusType'], DonatedItem.STATUS_IN_STORAGE)
        self.assertEqual(len(response.data['newStatus']['imageUrls']), 1)

        self.item.refresh_from_db()
        self.assertEqual(self.item.current_status, DonatedItem.STATUS_IN_STORAGE)
        self.assertEqual(self.item.statuses.count(), 2)
        self.assertEqual(len(mail.outbox), 0)
        self.assertTrue(AuditLog.objects.filter(action='status_change').exists())

    def test_add_status_informs_donor(self):
        response = self.client.post(self.url, {
            'statusType': DonatedItem.STATUS_DONATED,
            'informDonor': 'true',
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['giver@test.com'])
        self.assertIn(DonatedItem.STATUS_DONATED, mail.outbox[0].body)

    @patch('backend.donations.status_views.send_donation_update_email', side_effect=ConnectionError('smtp down'))
    def test_email_failure_does_not_fail_update(self, mock_send):
        response = self.client.post(self.url, {
            'statusType': DonatedItem.STATUS_DONATED,
            'informDonor': 'true',
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        mock_send.assert_called_once()

    def test_add_status_missing_status(self):
        response = self.client.post(self.url, {'informDonor': 'true'}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'status is required')

    def test_add_status_invalid_status(self):
        response = self.client.post(self.url, {'statusType': 'Lost'}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_add_status_item_not_found(self):
        response = self.client.post('/donatedItem/status/4242/', {
            'statusType': DonatedItem.STATUS_DONATED,
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_add_status_runs_tagging(self, mock_post):
        mock_post.return_value = gemini_response('Laptop, good')
        response = self.client.post(self.url, {
            'statusType': DonatedItem.STATUS_REFURBISHED,
            'imageFiles': [png_upload()],
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        tags = response.data['updatedStatus']['analysisMetadata']['tags']
        self.assertEqual([t['description'] for t in tags], ['Laptop', 'Good'])
        self.item.refresh_from_db()
        self.assertEqual(self.item.analysis_metadata['imagePath'], response.data['newStatus']['imageUrls'][0])

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_add_status_opt_out(self, mock_post):
        response = self.client.post(self.url, {
            'statusType': DonatedItem.STATUS_REFURBISHED,
            'imageFiles': [png_upload()],
            'optOutAnalysis': 'true',
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        mock_post.assert_not_called()
        self.assertIsNone(response.data['updatedStatus']['analysisMetadata'])

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_add_status_tagging_failure_is_ignored(self, mock_post):
        mock_post.side_effect = requests.ConnectionError('down')
        response = self.client.post(self.url, {
            'statusType': DonatedItem.STATUS_REFURBISHED,
            'imageFiles': [png_upload()],
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['updatedStatus']['analysisMetadata'])
        self.assertEqual(self.item.statuses.count(), 2)

    @override_settings(GOOGLE_GEMINI_API_KEY='test-key')
    @patch('backend.donations.image_analysis.requests.post')
    def test_add_status_with_malformed_model_reply(self, mock_post):
        mock_post.return_value = malformed_gemini_response()
        response = self.client.post(self.url, {
            'statusType': DonatedItem.STATUS_REFURBISHED,
            'imageFiles': [png_upload()],
        }, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['updatedStatus']['analysisMetadata'])

    def test_add_status_requires_admin(self):
        self.client.authenticate_user(TestDataFactory.create_user(email='giver@test.com'))
        response = self.client.post(self.url, {'statusType': DonatedItem.STATUS_DONATED}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_history_in_date_order(self):
        TestDataFactory.create_status(self.item, DonatedItem.STATUS_SOLD,
                                      date_modified=datetime(2024, 9, 1, tzinfo=dt_timezone.utc))
        TestDataFactory.create_status(self.item, DonatedItem.STATUS_REFURBISHED,
                                      date_modified=datetime(2024, 6, 1, tzinfo=dt_timezone.utc))
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            [s['statusType'] for s in response.data],
            [DonatedItem.STATUS_RECEIVED, DonatedItem.STATUS_REFURBISHED, DonatedItem.STATUS_SOLD],
        )

    def test_history_visible_to_item_donor(self):
        self.client.authenticate_user(TestDataFactory.create_user(email='giver@test.com'))
        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)


class ReanalyzeItemsCommandTests(LocalStorageMixin, TestCase):

    def setUp(self):
        super().setUp()
        # The mixin clears the API key
        key_settings = override_settings(GOOGLE_GEMINI_API_KEY='test-key')
        key_settings.enable()
        self.addCleanup(key_settings.disable)

    @patch('backend.donations.image_analysis.requests.post')
    def test_tags_untagged_items_only(self, mock_post):
        mock_post.return_value = gemini_response('Book, worn')
        untagged = TestDataFactory.create_item(item_type='Book')
        TestDataFactory.create_status(untagged, image_urls=[upload_to_storage(png_upload(), 'book.png')])
        tagged = TestDataFactory.create_item(analysis_metadata={'tags': [], 'version': 2})
        TestDataFactory.create_status(tagged, image_urls=[upload_to_storage(png_upload(), 'old.png')])
        no_photo = TestDataFactory.create_item()

        out = StringIO()
        call_command('reanalyze_items', stdout=out)

        untagged.refresh_from_db()
        no_photo.refresh_from_db()
        self.assertEqual(len(untagged.analysis_metadata['tags']), 2)
        self.assertIsNone(no_photo.analysis_metadata)
        self.assertEqual(mock_post.call_count, 1)
        self.assertIn('1 tagged', out.getvalue())

    @patch('backend.donations.image_analysis.requests.post')
    def test_all_flag_retags_everything(self, mock_post):
        mock_post.return_value = gemini_response('Lamp')
        tagged = TestDataFactory.create_item(analysis_metadata={'tags': [], 'version': 2})
        TestDataFactory.create_status(tagged, image_urls=[upload_to_storage(png_upload(), 'lamp.png')])

        call_command('reanalyze_items', '--all', stdout=StringIO())

        tagged.refresh_from_db()
        self.assertEqual(tagged.analysis_metadata['tags'][0]['description'], 'Lamp')
