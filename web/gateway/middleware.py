"""Request correlation and API body size middleware.

``RequestIdMiddleware`` gives every request an identifier, taken from the
client's ``X-Request-ID`` header when it looks sane or generated otherwise.
The id is stored on ``request.request_id`` and in ``REQUEST_ID_CTX`` so log
records (via ``gateway.logging_filters.RequestIdFilter``) and outbound gateway
calls can carry it without threading it through every signature. It is echoed
back in the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects ``/api/`` requests whose declared body is
larger than ``settings.API_MAX_BYTES`` with 413 ``PAYLOAD_TOO_LARGE`` before
any view parses them.
"""

import contextvars
import re
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class RequestIdMiddleware(MiddlewareMixin):
    """Sets ``request.request_id`` and mirrors it on the response."""

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER, "")
        if not _SAFE_ID.match(rid):
            rid = uuid.uuid4().hex
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > limit:
            return JsonResponse({"detail": "PAYLOAD_TOO_LARGE", "max_bytes": limit}, status=413)
        return None
