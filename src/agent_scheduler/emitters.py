import logging
from collections import deque
from typing import Callable, Deque, List, Optional, Protocol, Type, TypeVar

from agent_scheduler.domain.events import EventType, SchedulerEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=SchedulerEvent)


class EventEmitter(Protocol):
    """
    Capability the scheduler uses to publish lifecycle notifications. Implementations
    adapt it to a concrete transport (WebSocket, SSE, a message bus, ...).
    """

    def emit(self, event: SchedulerEvent) -> None:
        ...


class LoggingEventEmitter(EventEmitter):
    def __init__(self, level: int = logging.INFO):
        self.level = level

    def emit(self, event: SchedulerEvent) -> None:
        payload = event.model_dump(mode="json", exclude={"type"})
        logger.log(self.level, "%s %s", event.type.value, payload)


class InProcessEventEmitter(EventEmitter):
    """
    Fans events out to in-process subscribers and keeps a bounded history.
    A failing subscriber is logged and does not prevent delivery to the others.
    """

    def __init__(self, history_size: Optional[int] = 1000):
        self.history: Deque[SchedulerEvent] = deque(maxlen=history_size)
        self._subscribers: List[Callable[[SchedulerEvent], None]] = []

    def subscribe(self, callback: Callable[[SchedulerEvent], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event: SchedulerEvent) -> None:
        self.history.append(event)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", event.type.value)

    def of_type(self, event_type: EventType, cls: Type[E] = SchedulerEvent) -> List[E]:
        return [event for event in self.history if event.type == event_type and isinstance(event, cls)]

    def clear(self) -> None:
        self.history.clear()
