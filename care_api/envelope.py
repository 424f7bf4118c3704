"""Response envelope helpers."""

from decimal import Decimal
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Money stays exact on the wire
_ENCODERS = {Decimal: str}


def ok(data: Any = None) -> dict[str, Any]:
    return {"success": True, "data": jsonable_encoder(data, custom_encoder=_ENCODERS)}


def error_response(status_code: int, code: str, message: str, details: Any = None) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = jsonable_encoder(details, custom_encoder=_ENCODERS)
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})
