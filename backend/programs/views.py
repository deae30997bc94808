import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from backend.core.authentication import IsAdminRole, IsAdminRoleOrReadOnly
from backend.core.serializers import flatten_errors
from backend.core.utils import create_audit_log
from .cache import get_cached_program_list, cache_program_list
from .models import Program
from .serializers import ProgramSerializer

logger = logging.getLogger(__name__)


@api_view(['GET', 'POST'])
@permission_classes([IsAdminRoleOrReadOnly])
def program_list_create(request):
    """List all programs (cached) or create a new program"""
    if request.method == 'GET':
        try:
            data = get_cached_program_list()
            if data is None:
                data = ProgramSerializer(Program.objects.all(), many=True).data
                cache_program_list(list(data))
            return Response(data)
        except Exception:
            logger.exception("Error fetching programs")
            return Response({'message': 'Error fetching programs'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    serializer = ProgramSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)
    try:
        program = serializer.save()
    except Exception:
        logger.exception("Error creating program")
        return Response({'message': 'Error creating program'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    create_audit_log(request, 'create', 'Program', program.id, object_name=program.name)
    return Response(ProgramSerializer(program).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAdminRole])
def program_edit(request):
    """Update the program identified by `id` in the body"""
    try:
        program_id = int(request.data.get('id'))
    except (TypeError, ValueError):
        return Response({'message': 'Program ID must be an integer.'}, status=status.HTTP_400_BAD_REQUEST)

    program = Program.objects.filter(pk=program_id).first()
    if program is None:
        return Response({'message': f'Program with ID {program_id} not found'}, status=status.HTTP_404_NOT_FOUND)

    serializer = ProgramSerializer(program, data=request.data, partial=True)
    if not serializer.is_valid():
        return Response({'message': flatten_errors(serializer.errors)}, status=status.HTTP_400_BAD_REQUEST)
    try:
        program = serializer.save()
    except Exception:
        logger.exception(f"Error editing program {program_id}")
        return Response({'message': 'Error editing program'}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    create_audit_log(request, 'update', 'Program', program.id, object_name=program.name,
                     changes={k: str(v) for k, v in serializer.validated_data.items()})
    return Response(ProgramSerializer(program).data)
