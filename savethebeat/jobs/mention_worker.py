"""
In-process mention worker.

The Slack events route must answer within Slack's 3 second window, so it only
enqueues a MentionEvent here. A fixed pool of consumer tasks, started and
stopped by the application lifespan, runs the mention pipeline for each one.
Failures are logged and never retried; Slack's own redelivery and the user
re-mentioning the bot are the recovery paths.
"""

import asyncio
from collections.abc import Awaitable, Callable

from savethebeat.config import settings
from savethebeat.errors import AppError
from savethebeat.infrastructure.observability.logging import get_logger
from savethebeat.models.domain.slack_domain import MentionEvent

logger = get_logger(__name__)

MentionHandler = Callable[[MentionEvent], Awaitable[object]]


class MentionWorker:
    """asyncio.Queue plus N consumer tasks running a mention handler."""

    def __init__(
        self,
        handler: MentionHandler,
        concurrency: int | None = None,
        maxsize: int | None = None,
        drain_timeout: float | None = None,
    ):
        self.handler = handler
        self.concurrency = concurrency or settings.MENTION_WORKER_CONCURRENCY
        self.drain_timeout = (
            drain_timeout if drain_timeout is not None else settings.MENTION_WORKER_DRAIN_SECONDS
        )
        self.queue: asyncio.Queue[MentionEvent] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.MENTION_QUEUE_MAXSIZE
        )
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            logger.warning("Mention worker already started")
            return

        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"mention-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("Mention worker started", concurrency=self.concurrency)

    def enqueue(self, mention: MentionEvent) -> bool:
        """Queue a mention without blocking. Returns False if it was dropped."""
        try:
            self.queue.put_nowait(mention)
        except asyncio.QueueFull:
            logger.error(
                "Mention queue full, dropping event",
                slack_workspace_id=mention.workspace_id,
                slack_user_id=mention.user_id,
                channel_id=mention.channel_id,
                queue_size=self.queue.qsize(),
            )
            return False

        logger.debug("Mention queued", queue_size=self.queue.qsize())
        return True

    async def _consume(self, worker_id: int) -> None:
        while True:
            mention = await self.queue.get()
            try:
                outcome = await self.handler(mention)
                logger.info(
                    "Mention processed",
                    worker_id=worker_id,
                    slack_workspace_id=mention.workspace_id,
                    channel_id=mention.channel_id,
                    outcome=getattr(outcome, "value", outcome),
                )
            except AppError as e:
                logger.warning(
                    "Mention processing failed",
                    worker_id=worker_id,
                    slack_workspace_id=mention.workspace_id,
                    channel_id=mention.channel_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            except Exception:
                logger.exception(
                    "Unexpected error processing mention",
                    worker_id=worker_id,
                    slack_workspace_id=mention.workspace_id,
                    channel_id=mention.channel_id,
                )
            finally:
                self.queue.task_done()

    async def stop(self) -> None:
        """Wait (bounded) for queued mentions to finish, then cancel consumers."""
        if not self._tasks:
            return

        pending = self.queue.qsize()
        try:
            await asyncio.wait_for(self.queue.join(), timeout=self.drain_timeout)
        except TimeoutError:
            logger.warning(
                "Mention worker drain timed out",
                pending=self.queue.qsize(),
                drain_timeout=self.drain_timeout,
            )

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Mention worker stopped", drained=pending)
