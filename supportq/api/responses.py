"""Result envelope -> HTTP response"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from supportq.contracts.envelope import Result
from supportq.utils.error_sanitizer import sanitize_error_message

# Failure codes with a dedicated HTTP status; other failures are business
# outcomes (e.g. Shopify refused a cancel) and return 200 with ok=false.
STATUS_BY_CODE: dict[str, int] = {
    "proposal_not_found": 404,
    "invalid_status": 409,
    "execution_in_progress": 409,
    "POLL_CONCURRENT": 409,
    "POLL_THROTTLED": 429,
    "GMAIL_UNAVAILABLE": 503,
}


def result_response(result: Result) -> JSONResponse:
    body = result.to_dict()
    if result.ok:
        return JSONResponse(body)
    status_code = STATUS_BY_CODE.get(result.code or "", 200)
    if "message" in body:
        body["message"] = sanitize_error_message(body["message"], 400)
    return JSONResponse(body, status_code=status_code)
