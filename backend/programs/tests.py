"""
Test suite for Programs: validation, date handling, caching and endpoints
"""
from datetime import datetime, timezone as dt_timezone

from django.core.cache import cache
from django.test import TestCase
from rest_framework import status

from backend.core.exceptions import ValidationFailed
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.programs.cache import get_cached_program_list
from backend.programs.models import Program
from backend.programs.services import validate_program


class ValidateProgramTests(TestCase):

    def test_missing_id_returns_none(self):
        self.assertIsNone(validate_program(None))
        self.assertIsNone(validate_program(''))

    def test_existing_program(self):
        program = TestDataFactory.create_program()
        self.assertEqual(validate_program(program.id), program)
        self.assertEqual(validate_program(str(program.id)), program)

    def test_unknown_program(self):
        with self.assertRaises(ValidationFailed) as ctx:
            validate_program(999)
        self.assertEqual(str(ctx.exception), 'Program ID 999 is not valid or does not exist.')


class ProgramAPITests(TestCase):
    """Test Program API endpoints"""

    def setUp(self):
        cache.clear()
        self.admin = TestDataFactory.create_admin()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)
        self.payload = {
            'name': 'Laptops for Learning',
            'description': 'Refurbish donated laptops for local schools',
            'startDate': '2024-09-01',
            'aimAndCause': 'Close the digital divide',
        }

    def test_create_program(self):
        response = self.client.post('/program/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        program = Program.objects.get(pk=response.data['id'])
        self.assertEqual(program.start_date, datetime(2024, 9, 1, tzinfo=dt_timezone.utc))
        self.assertEqual(response.data['aimAndCause'], 'Close the digital divide')

    def test_create_program_datetime_truncated_to_midnight(self):
        self.payload['startDate'] = '2024-09-01T17:45:00Z'
        response = self.client.post('/program/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        program = Program.objects.get(pk=response.data['id'])
        self.assertEqual(program.start_date, datetime(2024, 9, 1, tzinfo=dt_timezone.utc))

    def test_create_program_blank_fields(self):
        self.payload['name'] = '   '
        self.payload['aimAndCause'] = ''
        response = self.client.post('/program/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('name', response.data['message'])
        self.assertIn('aimAndCause', response.data['message'])

    def test_create_program_description_too_long(self):
        self.payload['description'] = 'x' * 501
        response = self.client.post('/program/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_create_program_requires_admin(self):
        self.client.authenticate_user(self.user)
        response = self.client.post('/program/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_programs_for_active_user(self):
        TestDataFactory.create_program(name='A')
        TestDataFactory.create_program(name='B')
        self.client.authenticate_user(self.user)
        response = self.client.get('/program/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([p['name'] for p in response.data], ['A', 'B'])

    def test_list_mounted_under_api(self):
        TestDataFactory.create_program(name='A')
        response = self.client.get('/api/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)

    def test_list_is_cached_and_invalidated(self):
        TestDataFactory.create_program(name='A')
        self.client.get('/program/')
        self.assertEqual(len(get_cached_program_list()), 1)

        TestDataFactory.create_program(name='B')
        self.assertIsNone(get_cached_program_list())
        response = self.client.get('/program/')
        self.assertEqual(len(response.data), 2)

    def test_edit_program(self):
        program = TestDataFactory.create_program(name='Old name')
        response = self.client.post('/program/edit/', {
            'id': program.id, 'name': 'New name', 'startDate': '2025-02-03',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        program.refresh_from_db()
        self.assertEqual(program.name, 'New name')
        self.assertEqual(program.start_date, datetime(2025, 2, 3, tzinfo=dt_timezone.utc))

    def test_edit_missing_program(self):
        response = self.client.post('/program/edit/', {'id': 999, 'name': 'x'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_edit_requires_admin(self):
        program = TestDataFactory.create_program()
        self.client.authenticate_user(self.user)
        response = self.client.post('/program/edit/', {'id': program.id, 'name': 'x'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
