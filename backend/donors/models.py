from django.core.validators import RegexValidator
from django.db import models

contact_validator = RegexValidator(r'^\d{10}$', 'Contact must be a 10 digit phone number')
zipcode_validator = RegexValidator(r'^\d{5}$', 'Zipcode must be 5 digits')


class Donor(models.Model):
    """
    A person or organisation that gives items.

    A donor's account (core.User) is matched by email address rather than a
    foreign key, so donor records can exist before the person registers.
    """
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    contact = models.CharField(max_length=10, validators=[contact_validator])
    email = models.EmailField(unique=True)
    address_line1 = models.CharField(max_length=255)
    address_line2 = models.CharField(max_length=255, blank=True, null=True)
    state = models.CharField(max_length=100)
    city = models.CharField(max_length=100)
    zipcode = models.CharField(max_length=5, validators=[zipcode_validator])
    email_opt_in = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.full_name

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    class Meta:
        db_table = 'donors'
        ordering = ['id']
