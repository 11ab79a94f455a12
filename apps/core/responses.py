"""
Standard response envelope for API views.
"""
from rest_framework import status
from rest_framework.response import Response


def api_response(data=None, message=None, status_code=status.HTTP_200_OK):
    """
    Render the standard `{success, data | message}` envelope.

    Error envelopes are produced by apps.core.exceptions.custom_exception_handler.
    """
    body = {'success': True}
    if data is not None:
        body['data'] = data
    if message:
        body['message'] = message
    return Response(body, status=status_code)
