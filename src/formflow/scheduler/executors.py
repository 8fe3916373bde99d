"""Executor strategies for scheduled actions.

Three strategies exist:

- **DBOS** (durable): actions run as DBOS workflows with a durable sleep
  for the delay; they survive process restarts.
- **Immediate**: delay-zero actions run inline in the caller's task.
- **Degraded timer**: delayed actions without a durable backend run on a
  single-shot event-loop timer. A run missed because the process exited
  is neither retried nor logged.

Example:
    ```python
    from formflow.config import Settings
    from formflow.scheduler.executors import detect_executor

    durable = detect_executor(Settings(durable_backend="dbos"))
    ```
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
from abc import abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy.engine import make_url

from formflow.exceptions import ConfigurationError
from formflow.models import QueuedAction

if TYPE_CHECKING:
    from formflow.config import Settings

logger = logging.getLogger(__name__)

Dispatch = Callable[[QueuedAction], Awaitable[None]]

DEFAULT_DBOS_DATABASE_URL = "sqlite:///formflow_dbos.sqlite"


@runtime_checkable
class Executor(Protocol):
    """Protocol for action execution backends."""

    kind: str
    durable: bool

    @abstractmethod
    async def submit(self, action: QueuedAction, delay: float, dispatch: Dispatch) -> None:
        """Hand an action over; ``dispatch`` runs it once the delay has passed."""
        ...

    @abstractmethod
    async def cancel_group(self, group: str) -> int:
        """Cancel not-yet-run actions of a group. Returns the number cancelled."""
        ...

    @abstractmethod
    async def start(self, dispatch: Dispatch) -> None:
        """Bind the dispatcher and resume any actions left over from a previous run."""
        ...

    @abstractmethod
    async def pending(self) -> int | None:
        """Number of actions waiting to run, or None if unknown."""
        ...

    @abstractmethod
    async def shutdown(self) -> None:
        """Release backend resources."""
        ...


class ImmediateExecutor:
    """Runs actions inline. No durability."""

    kind = "immediate"
    durable = False

    async def start(self, dispatch: Dispatch) -> None:
        return None

    async def submit(self, action: QueuedAction, delay: float, dispatch: Dispatch) -> None:
        await dispatch(action)

    async def cancel_group(self, group: str) -> int:
        return 0

    async def pending(self) -> int | None:
        return 0

    async def shutdown(self) -> None:
        return None


class DegradedTimerExecutor:
    """Best-effort delayed execution on the running event loop.

    Used only when no durable backend is available. Timers live in process
    memory, so anything still waiting when the process stops is lost.
    """

    kind = "degraded_timer"
    durable = False

    def __init__(self) -> None:
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    async def start(self, dispatch: Dispatch) -> None:
        return None

    async def submit(self, action: QueuedAction, delay: float, dispatch: Dispatch) -> None:
        loop = asyncio.get_running_loop()

        def fire() -> None:
            self._timers.pop(action.action_id, None)
            task = loop.create_task(dispatch(action))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._timers[action.action_id] = loop.call_later(max(delay, 0), fire)

    async def cancel_group(self, group: str) -> int:
        return 0

    async def pending(self) -> int | None:
        return len(self._timers)

    async def shutdown(self) -> None:
        """Drop pending timers and wait for actions already running."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def dbos_available() -> bool:
    """Check whether the DBOS package can be imported."""
    return importlib.util.find_spec("dbos") is not None


def dbos_system_url(settings: Settings) -> str:
    """DBOS system database URL derived from settings.

    DBOS takes a synchronous URL, so async driver suffixes such as
    ``+aiosqlite`` or ``+asyncpg`` are stripped.
    """
    url = settings.dbos_database_url or settings.database_url
    if not url:
        return DEFAULT_DBOS_DATABASE_URL
    parsed = make_url(url)
    return parsed.set(drivername=parsed.get_backend_name()).render_as_string(hide_password=False)


class DBOSExecutor:
    """DBOS-based durable execution.

    Each action becomes a workflow with ID ``"{group}:{action_id}"``. The
    workflow sleeps durably for the delay and then runs the dispatch as a
    step, so a crash after dispatch does not run the action twice.
    """

    kind = "dbos"
    durable = True

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._initialized = False
        self._dispatch: Dispatch | None = None
        self._workflow: Any = None

    def _ensure_initialized(self) -> None:
        """Ensure DBOS is configured, the workflow registered and DBOS launched."""
        if self._initialized:
            return

        from dbos import DBOS, DBOSConfig

        config: DBOSConfig = {
            "name": "formflow",
            "system_database_url": dbos_system_url(self.settings),
        }
        DBOS(config=config)

        @DBOS.step()
        async def dispatch_action(payload: dict[str, Any]) -> None:
            await self._run_payload(payload)

        @DBOS.workflow()
        async def run_scheduled_action(payload: dict[str, Any], delay: float) -> None:
            if delay > 0:
                await DBOS.sleep_async(delay)
            await dispatch_action(payload)

        self._workflow = run_scheduled_action
        DBOS.launch()
        self._initialized = True
        logger.info("DBOS executor initialized")

    async def start(self, dispatch: Dispatch) -> None:
        """Bind the dispatcher and launch DBOS.

        Launching recovers workflows left pending by a previous process, so
        this must run at startup, before any recovered action can fire.
        """
        self._dispatch = dispatch
        self._ensure_initialized()

    async def _run_payload(self, payload: dict[str, Any]) -> None:
        if self._dispatch is None:
            raise ConfigurationError("DBOS executor has no dispatcher bound")
        await self._dispatch(QueuedAction.from_payload(payload))

    async def submit(self, action: QueuedAction, delay: float, dispatch: Dispatch) -> None:
        self._dispatch = dispatch
        self._ensure_initialized()

        from dbos import DBOS, SetWorkflowID

        with SetWorkflowID(f"{action.group}:{action.action_id}"):
            await DBOS.start_workflow_async(self._workflow, action.to_payload(), delay)

    async def _pending_workflow_ids(self, prefix: str = "") -> list[str]:
        from dbos import DBOS

        workflows = await asyncio.to_thread(
            DBOS.list_workflows, status=["PENDING", "ENQUEUED"]
        )
        return [w.workflow_id for w in workflows if w.workflow_id.startswith(prefix)]

    async def cancel_group(self, group: str) -> int:
        if self._dispatch is None:
            raise ConfigurationError("DBOS executor must be started before cancelling actions")
        self._ensure_initialized()

        from dbos import DBOS

        cancelled = 0
        for workflow_id in await self._pending_workflow_ids(f"{group}:"):
            await asyncio.to_thread(DBOS.cancel_workflow, workflow_id)
            cancelled += 1
        logger.info("Cancelled %d scheduled actions in group %s", cancelled, group)
        return cancelled

    async def pending(self) -> int | None:
        if not self._initialized:
            return None
        return len(await self._pending_workflow_ids())

    async def shutdown(self) -> None:
        if not self._initialized:
            return

        from dbos import DBOS

        DBOS.destroy(destroy_registry=True)
        self._initialized = False
        self._workflow = None
        logger.info("DBOS executor shut down")


def detect_executor(settings: Settings) -> Executor | None:
    """Pick the durable executor for these settings, if one is available.

    Args:
        settings: Configuration settings.

    Returns:
        A DBOSExecutor, or None when actions must run without durability.

    Raises:
        ConfigurationError: If ``durable_backend="dbos"`` but DBOS is not installed.
    """
    backend = settings.durable_backend
    if backend == "dbos":
        if not dbos_available():
            raise ConfigurationError("durable_backend='dbos' but the dbos package is not installed")
        return DBOSExecutor(settings)

    if backend == "auto" and dbos_available() and (
        settings.dbos_database_url or settings.database_url
    ):
        return DBOSExecutor(settings)

    logger.info("No durable executor available; delayed actions run in degraded mode")
    return None


__all__ = [
    "DBOSExecutor",
    "DegradedTimerExecutor",
    "Dispatch",
    "Executor",
    "ImmediateExecutor",
    "dbos_available",
    "dbos_system_url",
    "detect_executor",
]
