"""Logging filters for enriching log records with request context.

Adding ``RequestIdFilter`` to a handler makes ``%(request_id)s`` available
to formatters, so every JSON log line of a request carries the same id
without changing individual log statements.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    The value comes from ``REQUEST_ID_CTX`` set by ``RequestIdMiddleware``;
    outside a request it is the ContextVar default, a hyphen ("-"). Records
    that already carry a ``request_id`` via ``extra`` keep it.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
