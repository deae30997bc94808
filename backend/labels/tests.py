"""
Test suite for barcode and label generation
"""
import shutil
import tempfile
from io import BytesIO
from pathlib import Path
from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase, override_settings
from PIL import Image
from rest_framework import status

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.labels.label_generator import normalize_format, render_barcode, render_label

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'


class LabelGeneratorTests(TestCase):

    def test_normalize_format(self):
        self.assertEqual(normalize_format('SVG'), 'svg')
        self.assertEqual(normalize_format('png'), 'png')
        self.assertEqual(normalize_format('gif'), 'png')
        self.assertEqual(normalize_format(None), 'png')

    def test_render_png_barcode(self):
        content = render_barcode('42', 'png')
        self.assertTrue(content.startswith(PNG_SIGNATURE))

    def test_render_svg_barcode(self):
        content = render_barcode('42', 'svg')
        self.assertIn(b'<svg', content)

    def test_render_label_size(self):
        content = render_label('42', 'Laptop - Electronics', 'Jane Doe 2024-03-01')
        image = Image.open(BytesIO(content))
        self.assertEqual(image.size, (400, 200))

    def test_render_label_with_unencodable_value(self):
        # Code128 cannot encode this; the value is printed as text instead
        content = render_label('€42', 'Laptop - Electronics')
        self.assertTrue(content.startswith(PNG_SIGNATURE))


class BarcodeAPITests(TestCase):

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_png_by_default(self):
        response = self.client.get('/api/barcode/17/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'image/png')
        self.assertTrue(response.content.startswith(PNG_SIGNATURE))

    def test_svg_on_request(self):
        response = self.client.get('/api/barcode/17/', {'format': 'svg'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'image/svg+xml')
        self.assertIn(b'<svg', response.content)

    def test_unknown_format_falls_back_to_png(self):
        response = self.client.get('/api/barcode/17/', {'format': 'bmp'})
        self.assertEqual(response['Content-Type'], 'image/png')

    def test_blank_id(self):
        response = self.client.get('/api/barcode/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'donatedItemId is required')

        response = self.client.get('/api/barcode/%20/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_render_failure(self):
        response = self.client.get('/api/barcode/%E2%82%AC/')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['message'], 'Failed to generate barcode')

    @patch('backend.labels.views.render_barcode', return_value=PNG_SIGNATURE)
    def test_barcode_cached(self, mock_render):
        self.client.get('/api/barcode/99/')
        self.client.get('/api/barcode/99/')
        mock_render.assert_called_once_with('99', 'png')

    def test_requires_token(self):
        self.client.logout()
        response = self.client.get('/api/barcode/17/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_saved_when_enabled(self):
        directory = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, directory, ignore_errors=True)
        with override_settings(SAVE_BARCODES=True, BARCODE_STORAGE_DIR=Path(directory) / 'barcodes'):
            self.client.get('/api/barcode/17/', {'format': 'svg'})
        self.assertTrue((Path(directory) / 'barcodes' / '17.svg').exists())

    def test_not_saved_by_default(self):
        directory = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, directory, ignore_errors=True)
        with override_settings(SAVE_BARCODES=False, BARCODE_STORAGE_DIR=Path(directory)):
            self.client.get('/api/barcode/17/')
        self.assertEqual(list(Path(directory).iterdir()), [])


class LabelAPITests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(TestDataFactory.create_admin())

    def test_label_for_item(self):
        item = TestDataFactory.create_item()
        response = self.client.get(f'/api/barcode/{item.id}/label/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'image/png')
        self.assertEqual(Image.open(BytesIO(response.content)).size, (400, 200))

    def test_label_missing_item(self):
        response = self.client.get('/api/barcode/4242/label/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
