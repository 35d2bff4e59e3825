"""
Persistence Gateway.

Owns the engine (and with it the connection pool), the retry/backoff policy,
transaction demarcation and the background health probe. Components never
open sessions themselves; they receive the transaction-scoped session that
`with_transaction` hands to their operation.

Retrying always repeats a *whole* transaction (`run`), never a single
statement, so a retried stock decrement can not be applied twice.
"""
import asyncio
import random
import time
from typing import Awaitable, Callable, TypeVar

import structlog
from opentelemetry import trace
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shared.config.database import create_session_factory
from shared.config.settings import Settings
from shared.errors import FulfillmentError, TemporarilyUnavailable
from shared.observability import (
    fulfillment_db_failure_total,
    fulfillment_db_retry_total,
    fulfillment_db_up,
    fulfillment_transaction_duration_seconds,
)

from .classification import is_transient_error

T = TypeVar("T")

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


class PersistenceGateway:
    def __init__(
        self,
        engine: AsyncEngine,
        settings: Settings,
        session_factory: async_sessionmaker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.engine = engine
        self.settings = settings
        self.session_factory = session_factory or create_session_factory(engine)
        self._sleep = sleep
        self._health_task: asyncio.Task | None = None
        self.healthy = True

    # --- RETRY POLICY ---

    def compute_delay(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (1-based), jittered and capped."""
        delay = self.settings.retry_base_delay * (2 ** (attempt - 1))
        delay += random.uniform(0, self.settings.retry_jitter)
        return min(delay, self.settings.retry_max_delay)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
        label: str = "operation",
    ) -> T:
        attempts = max_attempts or self.settings.retry_max_attempts

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not is_transient_error(e):
                    # Domain failures are logged by the component that raised them
                    if not isinstance(e, FulfillmentError):
                        logger.error("db_operation_failed", operation=label, error=repr(e))
                        fulfillment_db_failure_total.labels(operation=label, kind="fatal").inc()
                    raise

                if attempt >= attempts:
                    logger.error(
                        "db_retries_exhausted",
                        operation=label,
                        attempts=attempt,
                        error=repr(e),
                    )
                    fulfillment_db_failure_total.labels(operation=label, kind="exhausted").inc()
                    raise TemporarilyUnavailable(label) from e

                delay = self.compute_delay(attempt)
                logger.warning(
                    "db_retry_scheduled",
                    operation=label,
                    attempt=attempt,
                    max_attempts=attempts,
                    delay_seconds=round(delay, 3),
                    error=repr(e),
                )
                fulfillment_db_retry_total.labels(operation=label).inc()
                await self._sleep(delay)

        raise TemporarilyUnavailable(label)  # only reachable with attempts < 1

    # --- TRANSACTIONS ---

    async def with_transaction(self, operation: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run `operation` inside one transaction: commit on success, rollback on any error."""
        async with self.session_factory() as session:
            try:
                result = await asyncio.wait_for(
                    operation(session), timeout=self.settings.statement_timeout
                )
                await session.commit()
                return result
            except Exception as e:
                try:
                    await session.rollback()
                except Exception as rollback_error:
                    # The original failure is what the caller needs to see
                    logger.error(
                        "db_rollback_failed",
                        error=repr(rollback_error),
                        original_error=repr(e),
                    )
                raise

    async def run(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        label: str,
        max_attempts: int | None = None,
    ) -> T:
        """Retry the smallest committable unit: one full transaction per attempt."""
        attempt_counter = 0

        async def attempt() -> T:
            nonlocal attempt_counter
            attempt_counter += 1
            started = time.perf_counter()
            with tracer.start_as_current_span(f"db.transaction {label}") as span:
                span.set_attribute("db.operation", label)
                span.set_attribute("db.attempt", attempt_counter)
                try:
                    return await self.with_transaction(operation)
                finally:
                    fulfillment_transaction_duration_seconds.labels(operation=label).observe(
                        time.perf_counter() - started
                    )

        return await self.with_retry(attempt, max_attempts=max_attempts, label=label)

    # --- HEALTH MONITORING ---

    async def check_health(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await asyncio.wait_for(
                    conn.execute(text("SELECT 1")), timeout=self.settings.statement_timeout
                )
        except Exception as e:
            if self.healthy:
                logger.warning("db_health_check_failed", error=repr(e))
            self.healthy = False
            fulfillment_db_up.set(0)
            return False

        if not self.healthy:
            logger.info("db_connectivity_restored")
        self.healthy = True
        fulfillment_db_up.set(1)
        return True

    async def _health_loop(self):
        while True:
            await self.check_health()
            await asyncio.sleep(self.settings.health_check_interval)

    def start_health_monitor(self) -> asyncio.Task:
        if self._health_task is None or self._health_task.done():
            self._health_task = asyncio.create_task(self._health_loop())
        return self._health_task

    async def stop_health_monitor(self):
        task, self._health_task = self._health_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self):
        await self.stop_health_monitor()
        await self.engine.dispose()
