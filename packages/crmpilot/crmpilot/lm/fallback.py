"""Provider fallback — run one unit of work against an ordered provider list."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from crmpilot.core.errors import AllProvidersFailedError, ConfigurationError
from crmpilot.core.identifiers import RunId
from crmpilot.lm.provider import BaseLMProvider
from crmpilot.runtime.event_log import EventLog, SeqCounter
from crmpilot.schemas.events import ProviderCallFailed, ProviderCallSucceeded
from crmpilot.schemas.run import ProviderAttempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderFallbackExecutor:
    """Tries providers in caller-supplied priority order until one succeeds.

    On any exception from the operation (rate limits, API errors, network
    failures) the failure is logged and the next provider is tried. Exactly
    one provider serves a successful call and none is tried twice. Every
    attempt is kept in ``attempts`` and, when an event log is attached,
    emitted as ProviderCallFailed/ProviderCallSucceeded.
    """

    def __init__(
        self,
        event_log: EventLog | None = None,
        run_id: RunId | None = None,
        seq: SeqCounter | None = None,
    ) -> None:
        self._event_log = event_log
        self._run_id = run_id
        self._seq = seq or SeqCounter(0)
        self.attempts: list[ProviderAttempt] = []

    def _record(self, attempt: ProviderAttempt) -> None:
        self.attempts.append(attempt)
        if self._event_log is None or self._run_id is None:
            return
        event_cls = ProviderCallSucceeded if attempt.success else ProviderCallFailed
        self._event_log.append(
            event_cls(
                run_id=self._run_id,
                seq=self._seq.next(),
                payload=attempt.model_dump(),
            )
        )

    async def execute(
        self,
        providers: list[BaseLMProvider],
        operation: Callable[[BaseLMProvider], Awaitable[T]],
    ) -> T:
        """Return the first successful ``operation(provider)`` result.

        Raises AllProvidersFailedError (wrapping the last error) when every
        provider fails, and ConfigurationError for an empty provider list.
        """
        if not providers:
            raise ConfigurationError("No LM providers configured")

        last_error: Exception | None = None
        start_index = len(self.attempts)
        for index, provider in enumerate(providers):
            started = time.monotonic()
            try:
                result = await operation(provider)
            except Exception as exc:
                last_error = exc
                self._record(
                    ProviderAttempt(
                        provider=provider.name,
                        success=False,
                        error=f"{type(exc).__name__}: {exc}",
                        duration_seconds=time.monotonic() - started,
                    )
                )
                if index + 1 < len(providers):
                    logger.warning(
                        "Provider '%s' failed: %s. Falling back to '%s'.",
                        provider.name,
                        exc,
                        providers[index + 1].name,
                    )
                else:
                    logger.warning("Provider '%s' failed: %s.", provider.name, exc)
                continue

            self._record(
                ProviderAttempt(
                    provider=provider.name,
                    success=True,
                    duration_seconds=time.monotonic() - started,
                )
            )
            return result

        raise AllProvidersFailedError(
            f"All {len(providers)} provider(s) failed; last error: {last_error}",
            last_error=last_error,
            attempts=self.attempts[start_index:],
        ) from last_error
