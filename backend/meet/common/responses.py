# meet/common/responses.py
from rest_framework.response import Response


def ok(data=None, http_status: int = 200):
    return Response({"success": True, "data": data, "error": None}, status=http_status)


def fail(code: str, message: str, http_status: int = 400):
    return Response(
        {"success": False, "data": None, "error": {"code": code, "message": message}},
        status=http_status,
    )
