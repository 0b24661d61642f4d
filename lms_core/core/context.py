"""Request context management using contextvars.

Each request (or operator script run) gets a request ID plus optional user,
trace and correlation IDs. Log processors read them from here, so services
never pass them around explicitly.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

_OPTIONAL_VARS: dict[str, ContextVar[str | None]] = {
    "user_id": user_id_var,
    "trace_id": trace_id_var,
    "correlation_id": correlation_id_var,
}


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID, generating one when not provided."""
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    """Get the current user ID."""
    return user_id_var.get()


def set_user_id(user_id: str | UUID | None) -> None:
    """Set the user ID for the current context."""
    user_id_var.set(str(user_id) if user_id is not None else None)


def set_trace_id(trace_id: str | None) -> None:
    """Set the distributed trace ID for the current context."""
    trace_id_var.set(trace_id)


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID (e.g. a payment webhook delivery ID)."""
    correlation_id_var.set(correlation_id)


def get_context() -> dict[str, Any]:
    """Return every non-empty context variable as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    for name, var in _OPTIONAL_VARS.items():
        value = var.get()
        if value:
            context[name] = value

    return context


def clear_context() -> None:
    """Clear all context variables at the end of a request."""
    request_id_var.set("")
    for var in _OPTIONAL_VARS.values():
        var.set(None)


class RequestContext:
    """Context manager for a request-like scope outside HTTP.

    Used by operator scripts (reconciliation runs) so their log lines carry
    a request ID like any API call:

        with RequestContext(correlation_id="reconcile-2024-06-01"):
            await coordinator.reconcile_pending()
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: str | UUID | None = None,
        trace_id: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self.request_id = request_id
        self.values: dict[str, str | None] = {
            "user_id": str(user_id) if user_id is not None else None,
            "trace_id": trace_id,
            "correlation_id": correlation_id,
        }
        self._request_token: Token[str] | None = None
        self._tokens: dict[str, Token[str | None]] = {}

    def __enter__(self) -> "RequestContext":
        """Enter context and set variables."""
        self._request_token = request_id_var.set(
            self.request_id or generate_request_id()
        )
        for name, value in self.values.items():
            if value is not None:
                self._tokens[name] = _OPTIONAL_VARS[name].set(value)
        return self

    def __exit__(self, *_: object) -> None:
        """Exit context and restore previous values."""
        for name, token in self._tokens.items():
            _OPTIONAL_VARS[name].reset(token)
        if self._request_token is not None:
            request_id_var.reset(self._request_token)
