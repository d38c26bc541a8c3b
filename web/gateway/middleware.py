"""Request-scoped middleware for the storefront API.

``RequestIdMiddleware`` gives every request an identifier, taken from the
incoming ``X-Request-ID`` header when present and generated otherwise. The
id is stored on ``request.request_id`` and in ``REQUEST_ID_CTX`` so log
records and outgoing payment provider calls carry it, and it is echoed in
the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects oversized ``/api/`` bodies before they
are parsed.
"""

import contextvars
import uuid

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"
    MAX_LENGTH = 128

    def process_request(self, request):
        rid = (request.META.get(self.HEADER) or "").strip()[: self.MAX_LENGTH]
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
            request._request_id_token = None
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > limit:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
