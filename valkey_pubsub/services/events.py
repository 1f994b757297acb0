"""
Namespaced event router over Valkey pub/sub.

Local listeners are registered per event name. The router holds one
store subscription per event name that has at least one listener and
routes inbound channel messages back to those listeners.

Publishing never calls local listeners directly: a process sees its own
events only through the store, and only while it listens for them.
"""

import asyncio
import inspect
import logging
import random
from typing import Any, Callable, Dict, List, Optional, Tuple

from valkey.exceptions import ValkeyError

from ..exceptions import MessageDecodeError
from ..utils.namespace import ChannelNamespacer
from ..utils.serialization import to_json, from_json

logger = logging.getLogger(__name__)

SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"


class EventRouter:
    """
    Listener registry with reference-counted channel subscriptions.

    Features:
    - FIFO listener invocation per event name
    - SUBSCRIBE on the first listener, UNSUBSCRIBE when the last one leaves
    - Subscription commands applied in order by a single worker task
    - Background listener loop with exponential backoff on transport errors
    - Sync and coroutine callbacks
    """

    def __init__(
        self,
        publisher: Any,
        subscriber: Any,
        namespacer: ChannelNamespacer,
        poll_timeout: float = 1.0,
        stop_timeout: float = 5.0
    ):
        """
        Initialize the event router.

        Args:
            publisher: Async client used for PUBLISH
            subscriber: Async client whose pubsub() connection is used for SUBSCRIBE
            namespacer: Maps event names to channel names
            poll_timeout: Seconds the listener blocks waiting for a message
            stop_timeout: Seconds stop() waits for the background tasks to exit
        """
        self._publisher = publisher
        self._subscriber = subscriber
        self._ns = namespacer
        self._poll_timeout = poll_timeout
        self._stop_timeout = stop_timeout

        self._listeners: Dict[str, List[Callable]] = {}
        self._commands: asyncio.Queue = asyncio.Queue()
        self._wakeup = asyncio.Event()

        self._pubsub: Optional[Any] = None
        self._worker_task: Optional[asyncio.Task] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._stopping = False

        # Exponential backoff state for the listener loop
        self._consecutive_errors = 0
        self._backoff_delay = 0.5
        self._max_backoff = 30.0
        self._backoff_factor = 2.0

    # ------------------------------------------------------------------
    # Registration

    def on(self, event: str, callback: Callable) -> None:
        """
        Register a callback for an event.

        The first listener for an event queues a SUBSCRIBE for its channel.
        """
        listeners = self._listeners.setdefault(event, [])
        listeners.append(callback)

        if len(listeners) == 1:
            self._queue_command(SUBSCRIBE, event)

    def off(self, event: str, callback: Callable) -> None:
        """
        Remove a callback from an event.

        Removing the last listener queues an UNSUBSCRIBE. Unknown callbacks
        are ignored. A callback registered through once() can be removed by
        passing the original callback.
        """
        listeners = self._listeners.get(event)
        if not listeners:
            return

        for index in range(len(listeners) - 1, -1, -1):
            registered = listeners[index]
            if registered is callback or getattr(registered, "listener", None) is callback:
                del listeners[index]
                break
        else:
            return

        if not listeners:
            del self._listeners[event]
            self._queue_command(UNSUBSCRIBE, event)

    def once(self, event: str, callback: Callable) -> Callable:
        """
        Register a callback that fires at most once.

        Every call registers its own wrapper, so the same callback may be
        passed to once() several times.

        Returns:
            The registered wrapper
        """
        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return callback(*args)

        wrapper.listener = callback
        self.on(event, wrapper)
        return wrapper

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def event_names(self) -> List[str]:
        return list(self._listeners)

    def channels(self) -> Tuple[str, ...]:
        """External channel names that should currently be subscribed."""
        return tuple(self._ns.to_external(event) for event in self._listeners)

    # ------------------------------------------------------------------
    # Publishing and dispatch

    async def emit(self, event: str, *args: Any) -> int:
        """
        Publish positional arguments as a JSON array on the event channel.

        Returns:
            Number of subscribers the store delivered the message to

        Raises:
            SerializationError: If an argument is not JSON serializable
        """
        payload = to_json(list(args))
        channel = self._ns.to_external(event)
        receivers = await self._publisher.publish(channel, payload)
        logger.debug(f"Published {channel} to {receivers} subscriber(s)")
        return receivers

    async def dispatch(self, channel: Any, data: Any) -> None:
        """
        Route one inbound channel message to the local listeners.

        Listeners run in registration order with the decoded array spread
        as positional arguments. Coroutine results are awaited.

        Raises:
            MessageDecodeError: If data is not a JSON array
        """
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        event = self._ns.to_local(channel)

        try:
            args = from_json(data)
        except (TypeError, ValueError) as e:
            raise MessageDecodeError(channel, data, e) from e

        if not isinstance(args, list):
            raise MessageDecodeError(channel, data, TypeError("payload is not a JSON array"))

        # Snapshot so once() wrappers can remove themselves mid-dispatch
        for callback in list(self._listeners.get(event, ())):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> None:
        """Open the subscribe connection and start the worker and listener tasks."""
        if self._worker_task is not None:
            return

        self._stopping = False
        self._pubsub = self._subscriber.pubsub()

        # Re-subscribe listeners registered before start or before a restart
        self._commands = asyncio.Queue()
        for event in self._listeners:
            self._queue_command(SUBSCRIBE, event)

        self._worker_task = asyncio.create_task(self._apply_commands())
        self._listener_task = asyncio.create_task(self._listen_loop())
        logger.info("Event router started")

    async def stop(self) -> None:
        """
        Stop background tasks and close the subscribe connection.

        Waits at most stop_timeout for the tasks to finish. A task that is
        still running after that, for example inside a listener that
        ignores cancellation, is left to exit on its own; the listener
        loop does not read another message once stop() has been called.
        """
        self._stopping = True
        self._wakeup.set()

        tasks = [t for t in (self._worker_task, self._listener_task) if t is not None]
        self._worker_task = None
        self._listener_task = None

        for task in tasks:
            task.cancel()
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=self._stop_timeout)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(f"Event router task failed: {task.exception()!r}")
            if pending:
                logger.warning(
                    f"{len(pending)} event router task(s) still running after {self._stop_timeout}s"
                )

        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        logger.info("Event router stopped")

    @property
    def is_running(self) -> bool:
        tasks = (self._worker_task, self._listener_task)
        return all(task is not None and not task.done() for task in tasks)

    async def flush(self) -> None:
        """
        Wait until every queued subscription change has reached the store.

        Returns immediately when the router is not running; queued commands
        are applied on start().
        """
        if not self.is_running:
            return
        await self._commands.join()

    # ------------------------------------------------------------------
    # Background tasks

    def _queue_command(self, action: str, event: str) -> None:
        self._commands.put_nowait((action, self._ns.to_external(event)))

    async def _apply_commands(self) -> None:
        """Apply subscription changes one at a time, in the order queued."""
        while True:
            action, channel = await self._commands.get()
            try:
                await self._apply(action, channel)
            finally:
                self._commands.task_done()

    async def _apply(self, action: str, channel: str) -> None:
        try:
            if action == SUBSCRIBE:
                await self._pubsub.subscribe(channel)
                self._wakeup.set()
            else:
                await self._pubsub.unsubscribe(channel)
            logger.debug(f"Applied {action} for {channel}")
        except Exception as e:
            # Subscription changes are fire-and-forget for callers of on/off
            logger.error(f"Failed to {action} channel {channel}: {e}")

    async def _listen_loop(self) -> None:
        """Read channel messages and dispatch them until stopped."""
        logger.info("Pub/sub listener loop started")
        pubsub = self._pubsub

        while not self._stopping:
            if not pubsub.subscribed:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            try:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=self._poll_timeout
                )
            except (ValkeyError, OSError) as e:
                await self._backoff(e)
                continue
            except Exception as e:
                logger.exception("Unexpected error reading from the subscribe connection")
                await self._backoff(e)
                continue

            self._consecutive_errors = 0
            if message is None or message.get("type") != "message":
                continue

            channel, data = message["channel"], message["data"]
            try:
                await self.dispatch(channel, data)
            except MessageDecodeError as e:
                logger.error(f"Dropping message: {e}")
            except Exception:
                logger.exception(f"Listener raised while handling message on {channel}")

    async def _backoff(self, error: Exception) -> None:
        self._consecutive_errors += 1
        delay = min(
            self._backoff_delay * (self._backoff_factor ** (self._consecutive_errors - 1)),
            self._max_backoff
        )
        # Add jitter (±20%)
        delay = max(0.1, delay + delay * 0.2 * (2 * random.random() - 1))
        logger.error(
            f"Pub/sub listener error (attempt {self._consecutive_errors}): {error}. "
            f"Retrying in {delay:.2f}s..."
        )
        await asyncio.sleep(delay)
