"""
Test suite for accounts: password policy, JWT role checks, registration,
login and password reset
"""
from datetime import timedelta

from django.core import mail
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status

from backend.core.authentication import issue_token
from backend.core.models import User, AuditLog
from backend.core.password_policy import (
    validate_password_policy, generate_random_password, create_reset_token, hash_token,
)
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient, DEFAULT_PASSWORD


class PasswordPolicyTests(TestCase):
    """Test password rules"""

    def test_strong_password_passes(self):
        self.assertEqual(validate_password_policy('Blue!Horse42xyz', 'Jane Doe', 'jane@example.com'), [])

    def test_short_password_rejected(self):
        errors = validate_password_policy('Ab1!', '', '')
        self.assertIn('Password must be at least 12 characters', errors)

    def test_missing_character_class_rejected(self):
        errors = validate_password_policy('alllowercase123!', '', '')
        self.assertEqual(len(errors), 1)
        self.assertIn('uppercase', errors[0])

    def test_name_part_rejected(self):
        errors = validate_password_policy('Xx!Jane-2024abc', 'Jane Doe', 'someone@example.com')
        self.assertIn('Password must not contain parts of your name', errors)

    def test_single_letter_name_part_ignored(self):
        errors = validate_password_policy('Blue!Horse42xyz', 'J X', 'someone@example.com')
        self.assertEqual(errors, [])

    def test_email_local_part_rejected(self):
        errors = validate_password_policy('Qq1!donorbob!!', '', 'donorbob@example.com')
        self.assertIn('Password must not contain your email address or its local part', errors)

    def test_generated_password_meets_policy(self):
        for _ in range(20):
            password = generate_random_password()
            self.assertEqual(len(password), 16)
            self.assertEqual(validate_password_policy(password), [])

    def test_reset_token_stores_hash(self):
        user = TestDataFactory.create_user()
        raw = create_reset_token(user)
        user.refresh_from_db()
        self.assertEqual(len(raw), 64)
        self.assertEqual(user.reset_token, hash_token(raw))
        self.assertGreater(user.reset_token_expiry, timezone.now() + timedelta(minutes=59))


class UserModelTests(TestCase):

    def test_superuser_is_active_admin(self):
        user = User.objects.create_superuser(email='root@test.com', password=DEFAULT_PASSWORD, name='Root')
        self.assertEqual(user.role, User.ROLE_ADMIN)
        self.assertEqual(user.status, User.STATUS_ACTIVE)
        self.assertTrue(user.is_admin_role)

    def test_new_user_defaults(self):
        user = User.objects.create_user(email='new@test.com', password=DEFAULT_PASSWORD, name='New')
        self.assertEqual(user.role, User.ROLE_DONOR)
        self.assertEqual(user.status, User.STATUS_PENDING)
        self.assertFalse(user.is_account_active)


class RouteProtectionTests(TestCase):
    """Test JWT authentication and role checks"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.admin = TestDataFactory.create_admin()
        self.donor_user = TestDataFactory.create_user()

    def test_missing_token(self):
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['message'], 'Authorization token missing or Access denied.')

    def test_invalid_token(self):
        self.client.credentials(HTTP_AUTHORIZATION='Bearer not-a-token')
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['message'], 'Invalid or expired token')

    def test_bearer_token_accepted(self):
        self.client.authenticate_user(self.admin)
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_raw_token_accepted(self):
        self.client.authenticate_user(self.admin, bearer=False)
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_non_admin_rejected(self):
        self.client.authenticate_user(self.donor_user)
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'Access denied: Admins only.')

    def test_pending_account_rejected(self):
        pending_admin = TestDataFactory.create_admin(status=User.STATUS_PENDING)
        self.client.authenticate_user(pending_admin)
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['message'], 'Account pending approval or suspended.')

    def test_suspended_after_token_issued(self):
        self.client.authenticate_user(self.donor_user)
        self.donor_user.status = User.STATUS_SUSPENDED
        self.donor_user.save()
        response = self.client.get('/program/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_token_claims(self):
        from rest_framework_simplejwt.tokens import AccessToken
        token = AccessToken(issue_token(self.admin))
        self.assertEqual(token['userId'], self.admin.id)
        self.assertEqual(token['email'], self.admin.email)
        self.assertEqual(token['role'], 'ADMIN')

    def test_token_user_id_authenticates(self):
        self.client.credentials(HTTP_AUTHORIZATION=f'Bearer {issue_token(self.admin)}')
        response = self.client.get('/donor/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)


@override_settings(CORS_ALLOWED_ORIGINS=['http://localhost:3000'])
class CorsTests(TestCase):
    """Test cross-origin headers for the browser client"""

    def test_preflight_from_frontend(self):
        response = self.client.options(
            '/donor/',
            HTTP_ORIGIN='http://localhost:3000',
            HTTP_ACCESS_CONTROL_REQUEST_METHOD='GET',
        )
        self.assertEqual(response['Access-Control-Allow-Origin'], 'http://localhost:3000')

    def test_unknown_origin_not_allowed(self):
        response = self.client.get('/donor/', HTTP_ORIGIN='http://evil.example.com')
        self.assertNotIn('Access-Control-Allow-Origin', response)


class RegisterAndLoginTests(TestCase):
    """Test admin registration and login"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()

    def test_register_admin(self):
        response = self.client.post('/program/register/', {
            'name': 'Alex Admin',
            'email': 'alex@test.com',
            'password': 'Blue!Horse42xyz',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        user = User.objects.get(pk=response.data['userId'])
        self.assertEqual(user.role, User.ROLE_ADMIN)
        self.assertEqual(user.status, User.STATUS_PENDING)
        self.assertTrue(user.check_password('Blue!Horse42xyz'))

    def test_register_also_mounted_under_api(self):
        response = self.client.post('/api/register/', {
            'name': 'Sam Admin',
            'email': 'sam@test.com',
            'password': 'Blue!Horse42xyz',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_register_duplicate_email(self):
        TestDataFactory.create_user(email='taken@test.com')
        response = self.client.post('/program/register/', {
            'name': 'Alex Admin',
            'email': 'taken@test.com',
            'password': 'Blue!Horse42xyz',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Email already in use')

    def test_register_weak_password(self):
        response = self.client.post('/program/register/', {
            'name': 'Alex Admin',
            'email': 'alex@test.com',
            'password': 'weak',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('password', response.data['message'])

    def test_login_unknown_email(self):
        response = self.client.post('/program/login/', {
            'email': 'nobody@test.com', 'password': DEFAULT_PASSWORD,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['message'], 'Invalid email, please register to proceed with login.')

    def test_login_wrong_password(self):
        user = TestDataFactory.create_user()
        response = self.client.post('/program/login/', {
            'email': user.email, 'password': 'Wrong!Password99',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['message'], 'Invalid password.')

    def test_login_success(self):
        admin = TestDataFactory.create_admin(name='Alex Admin')
        response = self.client.post('/api/login/', {
            'email': admin.email, 'password': DEFAULT_PASSWORD,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'Login successful')
        self.assertEqual(response.data['name'], 'Alex Admin')
        self.assertEqual(response.data['role'], 'ADMIN')
        self.assertTrue(response.data['token'])

    def test_donor_first_login_requires_reset(self):
        donor_user = TestDataFactory.create_user(first_login=True)
        response = self.client.post('/program/login/', {
            'email': donor_user.email, 'password': DEFAULT_PASSWORD,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertTrue(response.data['requireReset'])
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn('reset-password?token=', mail.outbox[0].body)
        donor_user.refresh_from_db()
        self.assertIsNotNone(donor_user.reset_token)


class PasswordResetTests(TestCase):
    """Test forgot/reset password flow"""

    def setUp(self):
        self.client = AuthenticatedAPIClient()
        self.user = TestDataFactory.create_user(name='Jane Doe', email='jane@test.com', first_login=True)

    def test_forgot_password_sends_email(self):
        response = self.client.post('/passwordReset/forgotpassword/', {'email': 'jane@test.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['jane@test.com'])

    def test_forgot_password_unknown_email_same_response(self):
        response = self.client.post('/passwordReset/forgotpassword/', {'email': 'ghost@test.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(mail.outbox), 0)

    def test_reset_password(self):
        raw = create_reset_token(self.user)
        response = self.client.post('/passwordReset/resetpassword/', {
            'token': raw, 'newPassword': 'Fresh!Garden77q',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('Fresh!Garden77q'))
        self.assertIsNone(self.user.reset_token)
        self.assertFalse(self.user.first_login)
        self.assertTrue(AuditLog.objects.filter(action='password_reset', object_id=str(self.user.id)).exists())

    def test_reset_password_expired_token(self):
        raw = create_reset_token(self.user)
        self.user.reset_token_expiry = timezone.now() - timedelta(minutes=1)
        self.user.save()
        response = self.client.post('/passwordReset/resetpassword/', {
            'token': raw, 'newPassword': 'Fresh!Garden77q',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['message'], 'Invalid or expired token')

    def test_reset_password_policy_enforced(self):
        raw = create_reset_token(self.user)
        response = self.client.post('/passwordReset/resetpassword/', {
            'token': raw, 'newPassword': 'Jane!Garden77q',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('name', response.data['message'])
