from rest_framework import status
from rest_framework.response import Response

from apps.common.results import ActionResult

ERROR_STATUS = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "CONCURRENT_CONFLICT": status.HTTP_409_CONFLICT,
    "CAPACITY_EXCEEDED": status.HTTP_409_CONFLICT,
    "CONSISTENCY_ERROR": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "HORIZON_EXCEEDED": status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def error_response(result: ActionResult) -> Response:
    return Response(
        {"code": result.code, "message": result.message, "details": result.details},
        status=ERROR_STATUS.get(result.code, status.HTTP_400_BAD_REQUEST),
    )


def action_response(result: ActionResult, payload=None, *, success_status=status.HTTP_200_OK) -> Response:
    """Render an ``ActionResult``. ``payload`` replaces ``result.data`` on success."""
    if not result.ok:
        return error_response(result)
    return Response(result.data if payload is None else payload, status=success_status)
