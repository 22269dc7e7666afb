"""Retry policies for collaborator calls and optimistic write conflicts."""

from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain
from tenacity import (
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from commerce import settings
from commerce.domain import logger
from commerce.errors import CollaboratorError, Unavailable


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, CollaboratorError) and exc.transient


def collaborator_retry():
    """Bounded by attempts and by the overall time budget, whichever hits first."""
    return retry(
        reraise=True,
        stop=stop_after_attempt(settings.COLLABORATOR_MAX_ATTEMPTS)
        | stop_after_delay(settings.COLLABORATOR_TIMEOUT_SECONDS),
        wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
        retry=retry_if_exception(_is_transient),
    )


def call_collaborator(name: str, fn, *args, permanent_error=Unavailable, **kwargs):
    """Call a collaborator port with retries and a timeout.

    Transient failures that outlive the retry budget become ``Unavailable``.
    Permanent failures are not retried and surface as ``permanent_error``,
    so callers only ever see ``CommerceError`` kinds.
    """
    kwargs.setdefault("timeout", settings.COLLABORATOR_TIMEOUT_SECONDS)
    try:
        return collaborator_retry()(fn)(*args, **kwargs)
    except CollaboratorError as exc:
        if exc.transient:
            logger.warning("Collaborator unavailable", collaborator=name, error=str(exc))
            raise Unavailable(f"{name} is unavailable", collaborator=name) from exc
        logger.warning("Collaborator failed", collaborator=name, error=str(exc))
        raise permanent_error(f"{name} failed: {exc}", collaborator=name, permanent=True) from exc


@retry(
    reraise=True,
    stop=stop_after_attempt(2),
    retry=retry_if_exception_type(ExpectedVersionError),
)
def process_with_retry(command):
    """Process a command, retrying once if a concurrent writer won the version race.

    Handlers consult idempotency markers first, so the retry observes the
    winner's outcome instead of repeating its side effects.
    """
    return current_domain.process(command, asynchronous=False)
