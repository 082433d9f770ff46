"""
Task scheduler for the bridge's periodic work.

Every registered task gets its own loop, so a slow settlement transfer never
delays the other queues and a task never overlaps with itself.
"""

import asyncio
from datetime import timedelta
from typing import Dict, Any, List, Callable, Awaitable

import structlog

from goldstake.utils.clock import utc_now

logger = structlog.get_logger(__name__)


class ScheduledTask:
    """Represents a scheduled task."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        enabled: bool = True,
        run_immediately: bool = False
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.last_run = None
        self.next_run = utc_now()
        self.run_count = 0
        self.error_count = 0
        self.last_error = None

        if not run_immediately:
            self.next_run = utc_now() + timedelta(seconds=interval_seconds)

    def should_run(self) -> bool:
        """Check if task should run now."""
        return self.enabled and utc_now() >= self.next_run

    def seconds_until_due(self) -> float:
        return max(0.0, (self.next_run - utc_now()).total_seconds())

    def schedule_next_run(self):
        """Schedule the next run."""
        self.next_run = utc_now() + timedelta(seconds=self.interval_seconds)

    async def run(self):
        """Execute the task."""
        try:
            start_time = utc_now()
            await self.func()
            duration = (utc_now() - start_time).total_seconds()

            self.last_run = start_time
            self.run_count += 1
            self.schedule_next_run()

            if duration > self.interval_seconds:
                logger.warning(
                    f"Task overran its interval: {self.name}",
                    duration=duration,
                    interval=self.interval_seconds
                )

        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            self.schedule_next_run()  # Still schedule next run

            logger.error(
                f"Task failed: {self.name}",
                error=str(e),
                error_count=self.error_count
            )
            raise


class TaskScheduler:
    """Manages scheduled background tasks."""

    def __init__(self):
        self.tasks: Dict[str, ScheduledTask] = {}
        self.running = False
        self._loops: List[asyncio.Task] = []

    def register_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        enabled: bool = True,
        run_immediately: bool = False
    ):
        """Register a new scheduled task."""
        task = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            enabled=enabled,
            run_immediately=run_immediately
        )

        self.tasks[name] = task
        logger.info(f"Registered task: {name} (interval: {interval_seconds}s)")

    def enable_task(self, name: str):
        """Enable a task."""
        if name in self.tasks:
            self.tasks[name].enabled = True
            logger.info(f"Enabled task: {name}")

    def disable_task(self, name: str):
        """Disable a task."""
        if name in self.tasks:
            self.tasks[name].enabled = False
            logger.info(f"Disabled task: {name}")

    async def start(self):
        """Start one loop per task and wait until they are stopped."""
        logger.info("Starting task scheduler", tasks=list(self.tasks))
        self.running = True

        self._loops = [
            asyncio.create_task(self._task_loop(task), name=f"scheduler:{task.name}")
            for task in self.tasks.values()
        ]
        await asyncio.gather(*self._loops, return_exceptions=True)

        logger.info("Task scheduler stopped")

    async def stop(self):
        """Stop the task scheduler."""
        logger.info("Stopping task scheduler")
        self.running = False

        for loop in self._loops:
            if not loop.done():
                loop.cancel()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

    async def _task_loop(self, task: ScheduledTask):
        while self.running:
            try:
                await asyncio.sleep(task.seconds_until_due())
                if not self.running:
                    break
                if task.should_run():
                    await task.run()
                elif not task.enabled:
                    task.schedule_next_run()

            except asyncio.CancelledError:
                break
            except Exception:
                # Already counted and logged by ScheduledTask.run
                continue

    async def health_check(self) -> Dict[str, Any]:
        """Get health status of task scheduler."""
        total_tasks = len(self.tasks)
        enabled_tasks = sum(1 for task in self.tasks.values() if task.enabled)
        tasks_with_errors = sum(1 for task in self.tasks.values() if task.error_count > 0)

        task_statuses = {}
        for name, task in self.tasks.items():
            task_statuses[name] = {
                "enabled": task.enabled,
                "last_run": task.last_run.isoformat() if task.last_run else None,
                "next_run": task.next_run.isoformat(),
                "run_count": task.run_count,
                "error_count": task.error_count,
                "last_error": task.last_error
            }

        return {
            "healthy": self.running and tasks_with_errors < total_tasks * 0.5,
            "running": self.running,
            "total_tasks": total_tasks,
            "enabled_tasks": enabled_tasks,
            "tasks_with_errors": tasks_with_errors,
            "tasks": task_statuses
        }
