from backend.core.exceptions import ValidationFailed

from .models import Donor


def validate_donor(donor_id):
    """Return the donor with donor_id or raise ValidationFailed"""
    try:
        return Donor.objects.get(pk=int(donor_id))
    except (Donor.DoesNotExist, TypeError, ValueError):
        raise ValidationFailed(f'Donor ID {donor_id} is not valid or does not exist.')
