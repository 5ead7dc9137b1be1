from typing import Any, Optional
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

def api_response(status_code: int, data: Any, message: str = "Success") -> dict:
    """Success envelope; `success` follows the status code."""
    return {
        "statusCode": status_code,
        "data": data,
        "message": message,
        "success": status_code < 400,
    }

def no_store_json(data, status_code: int = 200, headers: Optional[dict] = None):
    """Return JSONResponse with no-store caching headers."""
    merged = dict(NO_STORE_HEADERS)
    if headers:
        merged.update(headers)
    return JSONResponse(content=jsonable_encoder(data), status_code=status_code, headers=merged)

def api_json(status_code: int, data: Any, message: str = "Success"):
    return no_store_json(api_response(status_code, data, message), status_code=status_code)
