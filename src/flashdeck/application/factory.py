"""
Engine Factory
Centralizes the wiring of gateway, error reporter and retry budgets from configuration.
"""

from flashdeck.application.batch_triage import BatchTriageEngine
from flashdeck.application.config import AppConfig
from flashdeck.application.retry import RetryPolicy
from flashdeck.application.review_session import ReviewSessionEngine
from flashdeck.domain.interfaces import ErrorReporter, SchedulingGateway
from flashdeck.infrastructure.adapters.error_log import HttpErrorReporter, LoggingErrorReporter
from flashdeck.infrastructure.adapters.http_gateway import HttpSchedulingGateway


def _policy(config: AppConfig, max_attempts: int) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max_attempts,
        base_delay=config.backoff_base_seconds,
        max_rate_limit_delay=config.max_rate_limit_delay,
    )


def get_gateway(config: AppConfig) -> SchedulingGateway:
    return HttpSchedulingGateway(
        url=config.gateway_url,
        api_token=config.api_token,
        timeout=config.request_timeout,
        rate_limit_delay=config.rate_limit_delay,
    )


def get_error_reporter(config: AppConfig) -> ErrorReporter:
    """
    Returns the remote collector when one is configured, the local log otherwise.
    """
    if config.error_log_url:
        return HttpErrorReporter(url=config.error_log_url)
    return LoggingErrorReporter()


def build_review_engine(
    config: AppConfig, gateway: SchedulingGateway | None = None
) -> ReviewSessionEngine:
    return ReviewSessionEngine(
        gateway=gateway or get_gateway(config),
        reporter=get_error_reporter(config),
        load_policy=_policy(config, config.load_max_attempts),
        submit_policy=_policy(config, config.submit_max_attempts),
    )


def build_triage_engine(
    config: AppConfig, gateway: SchedulingGateway | None = None
) -> BatchTriageEngine:
    return BatchTriageEngine(
        gateway=gateway or get_gateway(config),
        reporter=get_error_reporter(config),
        deck_id=config.deck_id,
        commit_policy=_policy(config, config.commit_max_attempts),
        load_policy=_policy(config, config.load_max_attempts),
        poll_interval=config.batch_poll_interval,
        poll_attempts=config.batch_poll_attempts,
    )
