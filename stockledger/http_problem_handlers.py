# stockledger/http_problem_handlers.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from stockledger.services.errors import InventoryError

logger = logging.getLogger("stockledger")


def _problem(
    *,
    status: int,
    error_code: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    details: Optional[Sequence[Dict[str, Any]]] = None,
    trace_id: Optional[str] = None,
) -> JSONResponse:
    """error_code / message / http_status always present; the rest only when set."""
    body: Dict[str, Any] = {"error_code": error_code, "message": message, "http_status": int(status)}
    if context:
        body["context"] = context
    if details:
        body["details"] = list(details)
    if trace_id:
        body["trace_id"] = trace_id
    return JSONResponse(status_code=int(status), content=body)


def _new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def _req_ctx(req: Request) -> Dict[str, Any]:
    return {"path": getattr(req.url, "path", ""), "method": req.method}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(InventoryError)
    async def _inventory_exc(req: Request, exc: InventoryError):
        trace_id = _new_trace_id()
        logger.info("REJECTED[%s] %s: %s", trace_id, exc.error_code, exc.message)
        return _problem(
            status=exc.http_status,
            error_code=exc.error_code,
            message=exc.message,
            context={**_req_ctx(req), **exc.context},
            details=exc.details,
            trace_id=trace_id,
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_exc(req: Request, exc: RequestValidationError):
        details: List[Dict[str, Any]] = []
        for i, e in enumerate(exc.errors()):
            details.append(
                {
                    "type": "validation",
                    "path": ".".join(str(p) for p in e.get("loc", ())) or f"validation[{i}]",
                    "reason": str(e.get("msg") or e.get("type") or "invalid"),
                }
            )
        return _problem(
            status=422,
            error_code="request_validation_error",
            message="request parameters are invalid",
            context=_req_ctx(req),
            details=details,
            trace_id=_new_trace_id(),
        )

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        msg = str(exc.detail) if exc.detail is not None else "request rejected"
        return _problem(
            status=int(exc.status_code),
            error_code="http_error",
            message=msg,
            context=_req_ctx(req),
            details=[{"type": "state", "reason": msg}],
            trace_id=_new_trace_id(),
        )

    @app.exception_handler(Exception)
    async def _unhandled_exc(req: Request, exc: Exception):
        trace_id = _new_trace_id()
        logger.exception("UNHANDLED_EXC[%s]: %s", trace_id, exc)
        return _problem(
            status=500,
            error_code="internal_error",
            message="internal error, please retry later",
            context=_req_ctx(req),
            trace_id=trace_id,
        )
