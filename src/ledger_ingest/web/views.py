"""
Views for the ingestion API.
"""

import base64
import binascii
import hmac
import json
import logging
from functools import wraps
from typing import Iterator

from django.conf import settings
from django.http import HttpRequest, HttpResponse, JsonResponse, StreamingHttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from .. import __version__
from ..config import ConfigValidationError, load_config
from ..einvoice import process_invoice_file
from ..statements import StatementReadError, WindowProcessor, build_window_processor, encode_sse
from ..statements.progress import Event

logger = logging.getLogger(__name__)


def get_window_processor() -> WindowProcessor:
    """
    Build the window processor from the configured config file.

    Raises:
        ConfigValidationError: The model API key is not configured
    """
    config = load_config(settings.LEDGER_INGEST_CONFIG)
    return build_window_processor(config)


def token_required(view):
    """Reject requests without the configured bearer token (no-op when unset)."""

    @wraps(view)
    def wrapper(request: HttpRequest, *args, **kwargs) -> HttpResponse:
        expected = getattr(settings, "LEDGER_INGEST_TOKEN", "")
        if expected:
            header = request.headers.get("Authorization", "")
            supplied = header[7:] if header.startswith("Bearer ") else ""
            if not hmac.compare_digest(supplied, expected):
                return JsonResponse({"error": "Unauthorized"}, status=401)
        return view(request, *args, **kwargs)

    return wrapper


def health(request: HttpRequest) -> JsonResponse:
    return JsonResponse({"status": "ok", "version": __version__})


def _event_stream(events: Iterator[Event], processor: WindowProcessor) -> Iterator[bytes]:
    try:
        for event in events:
            yield encode_sse(event)
    except Exception:
        logger.exception("Window stream aborted")
        raise
    finally:
        processor.close()


@csrf_exempt
@require_http_methods(["POST"])
@token_required
def parse_statement_window(request: HttpRequest) -> HttpResponse:
    """
    Process one extraction window and stream its events.

    Body: {"pdfBase64": str, "startChunk": int, "maxChunks": int}
    Response: text/event-stream of progress/waiting/chunk_error events
    terminated by exactly one done event.
    """
    try:
        body = json.loads(request.body or b"{}")
    except (ValueError, UnicodeDecodeError):
        return JsonResponse({"error": "Invalid JSON body"}, status=400)
    if not isinstance(body, dict):
        return JsonResponse({"error": "Invalid JSON body"}, status=400)

    pdf_b64 = body.get("pdfBase64")
    if not pdf_b64 or not isinstance(pdf_b64, str):
        return JsonResponse({"error": "No PDF provided"}, status=400)

    try:
        processor = get_window_processor()
    except ConfigValidationError as e:
        logger.error("Window endpoint not configured: %s", e)
        return JsonResponse({"error": str(e)}, status=500)

    try:
        pdf_bytes = base64.b64decode(pdf_b64, validate=True)
    except (binascii.Error, ValueError):
        processor.close()
        return JsonResponse({"error": "pdfBase64 is not valid base64"}, status=400)

    try:
        events = processor.process(pdf_bytes, body.get("startChunk", 0), body.get("maxChunks"))
    except StatementReadError as e:
        logger.warning("Unreadable statement PDF: %s", e)
        processor.close()
        return JsonResponse({"error": str(e)}, status=400)

    response = StreamingHttpResponse(_event_stream(events, processor), content_type="text/event-stream")
    response["Cache-Control"] = "no-cache"
    response["X-Accel-Buffering"] = "no"
    return response


@csrf_exempt
@require_http_methods(["POST"])
@token_required
def parse_invoices(request: HttpRequest) -> JsonResponse:
    """Parse an uploaded XML, P7M or ZIP file without storing it."""
    upload = request.FILES.get("file")
    if upload is None:
        return JsonResponse({"error": "No file provided"}, status=400)

    include_xml = request.GET.get("include_xml", "").lower() in ("1", "true", "yes")
    results = process_invoice_file(upload.name, upload.read())

    logger.info(
        "Parsed %s: %d ok, %d failed",
        upload.name,
        sum(1 for r in results if r.data is not None),
        sum(1 for r in results if r.data is None),
    )
    return JsonResponse([r.to_dict(include_xml=include_xml) for r in results], safe=False)
