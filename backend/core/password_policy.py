"""Password rules, generated passwords and reset tokens"""
import hashlib
import re
import secrets
from datetime import timedelta

from django.core.exceptions import ValidationError
from django.utils import timezone

PASSWORD_PATTERN = re.compile(r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^A-Za-z0-9]).{12,}$')
NAME_SEPARATORS = re.compile(r'[\s\-_.]+')

RANDOM_PASSWORD_CHARSET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ1234567890$&+,:;=?@#|'<>.^*()%!-"
RANDOM_PASSWORD_SPECIALS = re.compile(r"[$&+,:;=?@#|'<>.^*()%!-]")

RESET_TOKEN_TTL = timedelta(hours=1)

COMPLEXITY_MESSAGE = (
    'Password must contain at least one uppercase letter, one lowercase letter, '
    'one number and one special character'
)


def validate_password_policy(password, name='', email=''):
    """
    Return the list of rule violations for password.

    The password must be at least 12 characters with lower, upper, digit and
    special characters, and must not contain a name part (2+ characters), the
    email local part or the whole email address. Comparisons ignore case.
    """
    errors = []
    password = password or ''
    if len(password) < 12:
        errors.append('Password must be at least 12 characters')
    elif not PASSWORD_PATTERN.match(password):
        errors.append(COMPLEXITY_MESSAGE)

    lowered = password.lower()
    name = (name or '').lower()
    email = (email or '').lower()

    for part in NAME_SEPARATORS.split(name):
        if len(part) >= 2 and part in lowered:
            errors.append('Password must not contain parts of your name')
            break

    if email:
        local_part = email.split('@')[0]
        if local_part and local_part in lowered:
            errors.append('Password must not contain your email address or its local part')
        elif email in lowered:
            errors.append('Password must not contain your email address')
    return errors


class ComplexityValidator:
    """AUTH_PASSWORD_VALIDATORS entry enforcing the character class rules"""

    def validate(self, password, user=None):
        name = getattr(user, 'name', '') if user is not None else ''
        email = getattr(user, 'email', '') if user is not None else ''
        errors = validate_password_policy(password, name, email)
        if errors:
            raise ValidationError(errors, code='password_policy')

    def get_help_text(self):
        return COMPLEXITY_MESSAGE


def generate_random_password(length=16):
    """Random password that always satisfies the character class rules"""
    while True:
        password = ''.join(secrets.choice(RANDOM_PASSWORD_CHARSET) for _ in range(length))
        if (RANDOM_PASSWORD_SPECIALS.search(password)
                and re.search(r'[A-Z]', password)
                and re.search(r'[a-z]', password)
                and re.search(r'[0-9]', password)):
            return password


def hash_token(raw_token):
    return hashlib.sha256(raw_token.encode('utf-8')).hexdigest()


def create_reset_token(user, ttl=RESET_TOKEN_TTL):
    """Store the hash of a fresh reset token on user and return the raw token"""
    raw_token = secrets.token_hex(32)
    user.reset_token = hash_token(raw_token)
    user.reset_token_expiry = timezone.now() + ttl
    user.save(update_fields=['reset_token', 'reset_token_expiry', 'updated_at'])
    return raw_token
