"""
Test utilities and factories for creating test data
"""
import random
import string
from datetime import datetime, timezone as dt_timezone

from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from backend.core.authentication import issue_token
from backend.donors.models import Donor
from backend.programs.models import Program
from backend.donations.models import DonatedItem, DonatedItemStatus

User = get_user_model()

DEFAULT_PASSWORD = 'Str0ng!Secret#42'


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(email=None, name=None, password=DEFAULT_PASSWORD, role=User.ROLE_DONOR,
                    status=User.STATUS_ACTIVE, first_login=False):
        """Create a test user (ACTIVE by default)"""
        if not name:
            name = f'Test User {TestDataFactory.random_string(4)}'
        if not email:
            email = f'user_{TestDataFactory.random_string(6).lower()}@test.com'
        return User.objects.create_user(
            email=email,
            password=password,
            name=name,
            role=role,
            status=status,
            first_login=first_login,
        )

    @staticmethod
    def create_admin(email=None, name=None, password=DEFAULT_PASSWORD, status=User.STATUS_ACTIVE):
        """Create an ADMIN user"""
        return TestDataFactory.create_user(email=email, name=name, password=password,
                                           role=User.ROLE_ADMIN, status=status)

    @staticmethod
    def create_donor(email=None, first_name='Jane', last_name='Doe', email_opt_in=True):
        """Create a test donor"""
        if not email:
            email = f'donor_{TestDataFactory.random_string(6).lower()}@test.com'
        return Donor.objects.create(
            first_name=first_name,
            last_name=last_name,
            contact=f'{random.randint(1000000000, 9999999999)}',
            email=email,
            address_line1='1 Main Street',
            state='MA',
            city='Boston',
            zipcode='02115',
            email_opt_in=email_opt_in,
        )

    @staticmethod
    def create_program(name=None, description='Refurbished laptops for students',
                       aim_and_cause='Digital inclusion', start_date=None):
        """Create a test program"""
        if not name:
            name = f'Program {TestDataFactory.random_string(6)}'
        if not start_date:
            start_date = datetime(2024, 1, 15, tzinfo=dt_timezone.utc)
        return Program.objects.create(
            name=name,
            description=description,
            start_date=start_date,
            aim_and_cause=aim_and_cause,
        )

    @staticmethod
    def create_item(donor=None, program=None, item_type='Laptop', category='Electronics',
                    quantity=1, current_status=DonatedItem.STATUS_RECEIVED, date_donated=None,
                    analysis_metadata=None):
        """Create a donated item (without status history)"""
        if donor is None:
            donor = TestDataFactory.create_donor()
        if not date_donated:
            date_donated = datetime(2024, 3, 1, tzinfo=dt_timezone.utc)
        return DonatedItem.objects.create(
            item_type=item_type,
            category=category,
            quantity=quantity,
            current_status=current_status,
            date_donated=date_donated,
            donor=donor,
            program=program,
            analysis_metadata=analysis_metadata,
        )

    @staticmethod
    def create_status(item, status_type=DonatedItem.STATUS_RECEIVED, date_modified=None, image_urls=None):
        """Append a status row to an item's history"""
        if not date_modified:
            date_modified = item.date_donated
        return DonatedItemStatus.objects.create(
            donated_item=item,
            status_type=status_type,
            date_modified=date_modified,
            image_urls=image_urls or [],
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user, bearer=True):
        """Authenticate the client with a user's access token"""
        token = issue_token(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {token}' if bearer else token)
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
