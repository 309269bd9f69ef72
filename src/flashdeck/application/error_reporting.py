import logging
import traceback

from flashdeck.domain.constants import USER_AGENT
from flashdeck.domain.interfaces import ErrorReporter
from flashdeck.domain.models import ErrorLogPayload

logger = logging.getLogger(__name__)


async def report_failure(reporter: ErrorReporter | None, error: BaseException, path: str) -> None:
    """Send a failure to the error-logging side channel. Never raises."""
    logger.error(f"[{path}] {error}")
    if reporter is None:
        return

    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    payload = ErrorLogPayload(
        path=path,
        message=str(error) or type(error).__name__,
        stack=stack,
        user_agent=USER_AGENT,
    )
    try:
        await reporter.report(payload)
    except Exception as e:
        logger.warning(f"Failed to log error: {e}")
