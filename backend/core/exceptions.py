from rest_framework.views import exception_handler


class ValidationFailed(Exception):
    """A referenced donor or program does not exist"""


def api_exception_handler(exc, context):
    """DRF exception handler that reports errors as {'message': ...}"""
    response = exception_handler(exc, context)
    if response is not None and isinstance(response.data, dict) and 'detail' in response.data:
        response.data = {'message': response.data['detail']}
    return response
