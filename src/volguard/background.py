"""Node agent background processing."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

from aiojobs import Scheduler
from safir.datetime import current_datetime
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .services.collector import VolumeGroupCollector
from .services.reconciler import VolumeReconciler

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Manage node agent background tasks.

    While the node agent is running, it needs to perform two periodic
    background tasks:

    #. Refresh the volume group capacity metrics of the node.
    #. Reconcile logical volume sizes with their claims.

    This class manages both of these tasks and their schedules. It only does
    the task management; all of the work is done by the underlying service
    objects.

    This class is created during startup and tracked as part of the
    `~volguard.factory.ProcessContext`.

    Parameters
    ----------
    collector
        Volume group metrics collector.
    reconciler
        Volume reconciler.
    metrics_interval
        How often to refresh metrics.
    reconcile_interval
        How often to reconcile volumes.
    slack_client
        Optional Slack webhook client for alerts.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        collector: VolumeGroupCollector,
        reconciler: VolumeReconciler,
        metrics_interval: timedelta,
        reconcile_interval: timedelta,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._collector = collector
        self._reconciler = reconciler
        self._metrics_interval = metrics_interval
        self._reconcile_interval = reconcile_interval
        self._slack = slack_client
        self._logger = logger

        self._scheduler: Scheduler | None = None

    async def start(self) -> None:
        """Start all background tasks.

        Intended to be called during startup. Metrics are collected once in
        the foreground first so that they are available as soon as the agent
        starts serving requests. Reconciliation waits for its first interval.
        """
        if self._scheduler:
            msg = "Background tasks already running, cannot start"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()

        self._logger.info("Collecting initial volume group metrics")
        try:
            await self._collector.collect()
        except Exception:
            self._logger.exception("Cannot collect volume group metrics")

        coros = [
            self._loop(
                self._collector.collect,
                self._metrics_interval,
                "collecting volume group metrics",
            ),
            self._loop(
                self._reconciler.reconcile,
                self._reconcile_interval,
                "reconciling volume sizes",
            ),
        ]
        self._logger.info("Starting background tasks")
        for coro in coros:
            await self._scheduler.spawn(coro)

    async def stop(self) -> None:
        """Stop the background tasks."""
        if not self._scheduler:
            msg = "Background tasks were already stopped"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping background tasks")
        await self._scheduler.close()
        self._scheduler = None

    async def _loop(
        self,
        call: Callable[[], Awaitable[object]],
        interval: timedelta,
        description: str,
    ) -> None:
        """Wrap a coroutine in a periodic scheduling loop.

        The provided coroutine is run on every interval. This method always
        delays by the interval first before running the coroutine for the
        first time.

        Parameters
        ----------
        call
            Async function to run repeatedly.
        interval
            Scheduling interval to use.
        description
            Description of the background task for error reporting.
        """
        while True:
            await asyncio.sleep(interval.total_seconds())
            start = current_datetime(microseconds=True)
            try:
                await call()
            except Exception as e:
                # On failure, log the exception but otherwise continue as
                # normal, including the delay, so that the problem has some
                # time to be resolved.
                elapsed = current_datetime(microseconds=True) - start
                msg = f"Uncaught exception {description}"
                self._logger.exception(msg, delay=elapsed.total_seconds())
                if self._slack:
                    if isinstance(e, SlackException):
                        await self._slack.post_exception(e)
                    else:
                        await self._slack.post_uncaught_exception(e)
            elapsed = current_datetime(microseconds=True) - start
            if elapsed > interval:
                msg = f"{description.capitalize()} is running continuously"
                self._logger.warning(msg)
