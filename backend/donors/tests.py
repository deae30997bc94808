"""
Test suite for Donors: donor records, self-registration and account approval
"""
from unittest.mock import patch

from django.core import mail
from django.test import TestCase
from rest_framework import status

from backend.core.exceptions import ValidationFailed
from backend.core.models import User, AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.donors.models import Donor
from backend.donors.services import validate_donor


class ValidateDonorTests(TestCase):

    def test_existing_donor(self):
        donor = TestDataFactory.create_donor()
        self.assertEqual(validate_donor(donor.id), donor)

    def test_unknown_donor(self):
        with self.assertRaises(ValidationFailed) as ctx:
            validate_donor(12345)
        self.assertEqual(str(ctx.exception), 'Donor ID 12345 is not valid or does not exist.')


class DonorAPITests(TestCase):
    """Test Donor API endpoints"""

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)
        self.payload = {
            'firstName': 'Ada',
            'lastName': 'Lovelace',
            'contact': '6175550123',
            'email': 'ada@test.com',
            'addressLine1': '12 Analytical Way',
            'state': 'MA',
            'city': 'Cambridge',
            'zipcode': '02139',
            'emailOptIn': True,
        }

    def test_create_donor(self):
        response = self.client.post('/donor/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['firstName'], 'Ada')
        self.assertIsNone(response.data['addressLine2'])
        donor = Donor.objects.get(email='ada@test.com')
        self.assertEqual(donor.full_name, 'Ada Lovelace')
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['ada@test.com'])
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='Donor').exists())

    @patch('backend.donors.views.send_welcome_email', side_effect=ConnectionError('smtp down'))
    def test_create_donor_email_failure_ignored(self, mock_send):
        response = self.client.post('/donor/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        mock_send.assert_called_once()

    def test_create_donor_invalid_contact_and_zip(self):
        self.payload['contact'] = '555-0123'
        self.payload['zipcode'] = '2139'
        response = self.client.post('/donor/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('contact', response.data['message'])
        self.assertIn('zipcode', response.data['message'])

    def test_create_donor_duplicate_email(self):
        TestDataFactory.create_donor(email='ada@test.com')
        response = self.client.post('/donor/', self.payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_donors(self):
        TestDataFactory.create_donor()
        TestDataFactory.create_donor()
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

    def test_donor_emails(self):
        TestDataFactory.create_donor(email='one@test.com')
        response = self.client.get('/donor/emails/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data, ['one@test.com'])

    def test_donor_routes_require_admin(self):
        self.client.authenticate_user(TestDataFactory.create_user())
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'Access denied: Admins only.')


class DonorRegistrationTests(TestCase):

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_register_creates_pending_donor_account(self):
        TestDataFactory.create_admin(email='boss@test.com')
        TestDataFactory.create_admin(email='pending-boss@test.com', status=User.STATUS_PENDING)

        response = self.client.post('/donor/register/', {'name': 'Grace Hopper', 'email': 'grace@test.com'},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['message'], 'User registered. Please wait for approval from an admin.')
        self.assertNotIn('password', response.data)

        user = User.objects.get(pk=response.data['userId'])
        self.assertEqual(user.role, User.ROLE_DONOR)
        self.assertEqual(user.status, User.STATUS_PENDING)
        self.assertTrue(user.first_login)
        self.assertIsNotNone(user.reset_token)

        recipients = sorted(message.to[0] for message in mail.outbox)
        self.assertEqual(recipients, ['boss@test.com', 'grace@test.com'])

    def test_register_without_active_admins(self):
        response = self.client.post('/donor/register/', {'name': 'Grace', 'email': 'grace@test.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(len(mail.outbox), 1)

    def test_register_duplicate_email(self):
        TestDataFactory.create_user(email='grace@test.com')
        response = self.client.post('/donor/register/', {'name': 'Grace', 'email': 'GRACE@test.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Email already in use')

    @patch('backend.donors.views.send_password_reset', side_effect=ConnectionError('smtp down'))
    def test_register_reset_email_failure(self, mock_send):
        response = self.client.post('/donor/register/', {'name': 'Grace', 'email': 'grace@test.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['message'], 'Error registering donor')


class AccountApprovalTests(TestCase):

    def setUp(self):
        self.admin = TestDataFactory.create_admin()
        self.pending = TestDataFactory.create_user(email='new@test.com', status=User.STATUS_PENDING)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.admin)

    def test_pending_users(self):
        response = self.client.get('/donor/pending/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([u['email'] for u in response.data], ['new@test.com'])
        self.assertNotIn('status', response.data[0])

    def test_user_list(self):
        response = self.client.get('/donor/users/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 2)

    def test_approve_user(self):
        response = self.client.put(f'/donor/users/{self.pending.id}/', {'status': User.STATUS_ACTIVE}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'User updated')
        self.assertEqual(response.data['user']['status'], User.STATUS_ACTIVE)
        self.pending.refresh_from_db()
        self.assertEqual(self.pending.status, User.STATUS_ACTIVE)
        self.assertEqual(mail.outbox[0].to, ['new@test.com'])
        self.assertTrue(AuditLog.objects.filter(action='account_update', object_id=str(self.pending.id)).exists())

    def test_invalid_values_ignored(self):
        response = self.client.put(f'/donor/users/{self.pending.id}/', {'role': 'OWNER', 'status': 'GONE'},
                                   format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'No valid fields to update')
        self.pending.refresh_from_db()
        self.assertEqual(self.pending.status, User.STATUS_PENDING)

    def test_unknown_user(self):
        response = self.client.put('/donor/users/99999/', {'status': User.STATUS_ACTIVE}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['message'], 'User not found')


class DonorSelfServiceTests(TestCase):

    def setUp(self):
        self.donor = TestDataFactory.create_donor(email='jane@test.com')
        self.user = TestDataFactory.create_user(email='jane@test.com', name='Jane Doe')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_edit_own_profile_updates_account(self):
        response = self.client.post('/donor/edit/', {
            'id': self.donor.id,
            'old': 'jane@test.com',
            'email': 'jane.new@test.com',
            'lastName': 'Smith',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.donor.refresh_from_db()
        self.user.refresh_from_db()
        self.assertEqual(self.donor.email, 'jane.new@test.com')
        self.assertEqual(self.user.email, 'jane.new@test.com')
        self.assertEqual(self.user.name, 'Jane Smith')

    def test_edit_with_foreign_old_email_leaves_that_account_alone(self):
        admin = TestDataFactory.create_admin(email='boss@test.com', name='Boss Person')
        response = self.client.post('/donor/edit/', {
            'id': self.donor.id,
            'old': 'boss@test.com',
            'email': 'taken.over@test.com',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        admin.refresh_from_db()
        self.assertEqual(admin.email, 'boss@test.com')
        self.assertEqual(admin.name, 'Boss Person')

    def test_edit_without_old_email_updates_own_account(self):
        response = self.client.post('/donor/edit/', {'id': self.donor.id, 'email': 'jane2@test.com'},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, 'jane2@test.com')

    def test_admin_edit_with_mismatched_old_email(self):
        self.client.authenticate_user(TestDataFactory.create_admin())
        response = self.client.post('/donor/edit/', {
            'id': self.donor.id,
            'old': 'someone.else@test.com',
            'city': 'Salem',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Old email does not match donor record.')

    def test_admin_edit_updates_donor_account(self):
        self.client.authenticate_user(TestDataFactory.create_admin())
        response = self.client.post('/donor/edit/', {
            'id': self.donor.id,
            'old': 'JANE@test.com',
            'email': 'jane.admin@test.com',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, 'jane.admin@test.com')

    def test_edit_other_profile_denied(self):
        other = TestDataFactory.create_donor(email='someone@test.com')
        response = self.client.post('/donor/edit/', {'id': other.id, 'city': 'Salem'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_edit_requires_integer_id(self):
        response = self.client.post('/donor/edit/', {'id': 'abc'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_me_returns_profile_and_donations(self):
        item = TestDataFactory.create_item(donor=self.donor)
        TestDataFactory.create_item(donor=TestDataFactory.create_donor())
        response = self.client.get('/donor/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['profile']['email'], 'jane@test.com')
        self.assertEqual([d['id'] for d in response.data['donations']], [item.id])

    def test_me_without_donor_record(self):
        self.client.authenticate_user(TestDataFactory.create_user(email='nobody@test.com'))
        response = self.client.get('/donor/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['profile'])
        self.assertEqual(response.data['donations'], [])

    def test_suspended_account_blocked(self):
        self.user.status = User.STATUS_SUSPENDED
        self.user.save()
        response = self.client.get('/donor/me/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'Account pending approval or suspended.')
