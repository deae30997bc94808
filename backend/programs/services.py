from backend.core.exceptions import ValidationFailed

from .models import Program


def validate_program(program_id):
    """
    Resolve an optional program reference.

    Returns None when no id is given, the Program when it exists, and raises
    ValidationFailed otherwise.
    """
    if program_id in (None, ''):
        return None
    try:
        return Program.objects.get(pk=int(program_id))
    except (Program.DoesNotExist, TypeError, ValueError):
        raise ValidationFailed(f'Program ID {program_id} is not valid or does not exist.')
