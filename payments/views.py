import logging

from django.db import DatabaseError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from .reconciliation import build_default_engine

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def payment_webhook(request, provider):
    """
    Entry point of every provider notification. Answers 200 for anything the
    engine handled, 400 for a refused payload and 500 when the database itself
    failed so that the provider delivers again.
    """
    engine = build_default_engine()
    try:
        result = engine.process(provider, request.body, request.headers)
    except DatabaseError as e:
        logger.error(f"Database error while processing {provider} webhook: {e}", exc_info=True)
        return JsonResponse({'status': 'error'}, status=500)

    return JsonResponse({'status': result.status, 'event_id': result.event_id}, status=result.http_status)
