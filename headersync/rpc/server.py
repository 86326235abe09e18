"""
JSON-RPC 2.0 server over FastAPI.

Serves the header methods to light clients. Handlers are plain or async
callables registered by name; params may be positional or named. Every
dispatched call is kept in a bounded request log so callers (and tests) can
see what a node was asked for.
"""

from __future__ import annotations

import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
NOT_FOUND = -32004

REQUEST_LOG_SIZE = 1024


class RPCError(Exception):
    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_response(self, req_id: Any) -> dict:
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return {"jsonrpc": "2.0", "id": req_id, "error": error}


@dataclass(frozen=True)
class LoggedCall:
    method: str
    params: Any


class RPCServer:
    """Method registry plus the HTTP endpoint that dispatches into it."""

    def __init__(self, title: str = "headersync JSON-RPC") -> None:
        self.app = FastAPI(title=title, docs_url=None, redoc_url=None)
        self._methods: dict[str, Callable] = {}
        self.request_log: deque[LoggedCall] = deque(maxlen=REQUEST_LOG_SIZE)
        self.app.add_api_route("/", self._endpoint, methods=["POST"])

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, handler: Callable) -> None:
        self._methods[name] = handler

    def method(self, name: str) -> Callable:
        def decorator(func: Callable) -> Callable:
            self.register(name, func)
            return func

        return decorator

    def calls(self, method: str) -> list[Any]:
        """Params of every dispatched call to `method`, oldest first."""
        return [call.params for call in self.request_log if call.method == method]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _endpoint(self, request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(RPCError(PARSE_ERROR, "Parse error").to_response(None))

        if not isinstance(body, list):
            response = await self.dispatch(body)
            if response is None:
                return JSONResponse(content=None, status_code=204)
            return JSONResponse(response)

        if not body:
            return JSONResponse(RPCError(INVALID_REQUEST, "Empty batch").to_response(None))
        responses = []
        for item in body:
            response = await self.dispatch(item)
            if response is not None:
                responses.append(response)
        return JSONResponse(responses or None)

    async def dispatch(self, request: Any) -> Optional[dict]:
        """Handle one request object. Notifications (no id) get no response."""
        req_id = request.get("id") if isinstance(request, dict) else None
        notification = isinstance(request, dict) and "id" not in request
        try:
            method, params = _parse_envelope(request)
            handler = self._methods.get(method)
            if handler is None:
                raise RPCError(METHOD_NOT_FOUND, f"Method not found: {method}")
            self.request_log.append(LoggedCall(method, params))
            result = await _invoke(handler, params)
        except RPCError as e:
            if notification and e.code == METHOD_NOT_FOUND:
                return None
            return e.to_response(req_id)
        except TypeError as e:
            logger.warning("Bad params for %s: %s", request.get("method"), e)
            return RPCError(INVALID_PARAMS, str(e)).to_response(req_id)
        except Exception as e:
            logger.exception("RPC internal error in %s", request.get("method"))
            return RPCError(INTERNAL_ERROR, str(e)).to_response(req_id)

        if notification:
            return None
        return {"jsonrpc": "2.0", "id": req_id, "result": result}


def _parse_envelope(request: Any) -> tuple[str, Any]:
    if not isinstance(request, dict):
        raise RPCError(INVALID_REQUEST, "Invalid request")
    if request.get("jsonrpc") != "2.0":
        raise RPCError(INVALID_REQUEST, "Invalid JSON-RPC version")
    method = request.get("method")
    if not isinstance(method, str):
        raise RPCError(INVALID_REQUEST, "Invalid method")
    params = request.get("params", [])
    if not isinstance(params, (list, dict)):
        raise RPCError(INVALID_PARAMS, "Invalid params")
    return method, params


async def _invoke(handler: Callable, params: Any) -> Any:
    if isinstance(params, list):
        result = handler(*params)
    else:
        result = handler(**params)
    if inspect.isawaitable(result):
        result = await result
    return result
