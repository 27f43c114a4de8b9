"""
Request correlation for the works API.

Each request carries an id, taken from a well-formed ``X-Request-ID`` header
or minted here. It is echoed on the response, used in error envelopes and
stamped on log records written while the request is handled. Log records
written outside a request (the reconcile command) carry ``NO_REQUEST_ID``.
"""

import re
import threading
import uuid
from typing import Callable, Optional

from django.http import HttpRequest, HttpResponse

NO_REQUEST_ID = "-"
REQUEST_ID_HEADER = "X-Request-ID"

# Client ids end up in logs; anything outside this shape is replaced.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

_state = threading.local()


def get_current_request_id() -> str:
    return getattr(_state, "request_id", NO_REQUEST_ID)


def _resolve_request_id(header_value: Optional[str]) -> str:
    if header_value and _VALID_REQUEST_ID.match(header_value):
        return header_value
    return uuid.uuid4().hex


class RequestIDMiddleware:
    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]):
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        request_id = _resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.request_id = request_id

        outer = get_current_request_id()
        _state.request_id = request_id
        try:
            response = self.get_response(request)
        finally:
            _state.request_id = outer

        response[REQUEST_ID_HEADER] = request_id
        return response
