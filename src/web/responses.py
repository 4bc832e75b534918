"""Success envelope shared by every route: {success, message, data, timestamp}."""

from datetime import datetime, timezone
from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse


def success_response(data: Any, message: str, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": True,
            "message": message,
            "data": data,
            "timestamp": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
        },
    )
