from django.core.management.base import BaseCommand, CommandError

from backend.core.models import User
from backend.core.password_policy import validate_password_policy, generate_random_password


class Command(BaseCommand):
    help = 'Create an ACTIVE admin account, or promote and activate an existing one'

    def add_arguments(self, parser):
        parser.add_argument('email', type=str, help='Email address of the admin')
        parser.add_argument('--name', type=str, default='Administrator', help='Display name')
        parser.add_argument('--password', type=str, help='Password (generated and printed when omitted)')

    def handle(self, *args, **options):
        email = options['email'].strip()
        name = options['name']
        password = options.get('password')

        if password:
            errors = validate_password_policy(password, name, email)
            if errors:
                raise CommandError(', '.join(errors))

        user = User.objects.filter(email__iexact=email).first()
        if user:
            user.role = User.ROLE_ADMIN
            user.status = User.STATUS_ACTIVE
            user.first_login = False
            if password:
                user.set_password(password)
            user.save()
            self.stdout.write(self.style.SUCCESS(f'✓ Activated existing account {user.email} as ADMIN'))
            return

        generated = not password
        if generated:
            password = generate_random_password()
        user = User.objects.create_user(
            email=email,
            password=password,
            name=name,
            role=User.ROLE_ADMIN,
            status=User.STATUS_ACTIVE,
        )
        self.stdout.write(self.style.SUCCESS(f'✓ Created admin {user.email}'))
        if generated:
            self.stdout.write(f'  Generated password: {password}')
