"""Logging filters for enriching log records with request context.

The filter injects the current request id into log records using the
ContextVar set by ``core.middleware.RequestIdMiddleware``, so checkout
transitions, webhook acknowledgements and gateway calls can be correlated
per request without touching individual log statements.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    Records logged outside a request get a hyphen ("-") so formatters can
    always reference ``%(request_id)s``.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
