# chirp/utils/responses.py

GENERIC_ERROR = "Server error"


def format_error_response(exc, status_code=500, detail=None):
    detail = detail if detail is not None else str(exc)
    return {
        "success": False,
        "message": detail,
        "error": {
            "type": exc.__class__.__name__,
            "detail": detail,
            "status_code": status_code
        }
    }
