"""Fan-out of session data and status events to every attached UI consumer."""

import threading
from typing import Any, Callable, Dict, List, Optional

from .logger import Logger

DATA_CHANNEL = "session:data"
STATUS_CHANNEL = "session:status"

Consumer = Callable[[str, Dict[str, Any]], None]


class EventBroadcaster:
    """Observer list. Events go to whoever is attached when they are published."""

    def __init__(self):
        self.logger = Logger.get_logger(__name__)
        self._consumers: List[Consumer] = []
        # held while delivering, so detach() returning means no further calls
        self._lock = threading.RLock()

    def attach(self, consumer: Consumer) -> Callable[[], None]:
        """Attach ``consumer``; returns a callable that detaches it."""
        with self._lock:
            if consumer not in self._consumers:
                self._consumers.append(consumer)
        return lambda: self.detach(consumer)

    def detach(self, consumer: Consumer) -> None:
        with self._lock:
            if consumer in self._consumers:
                self._consumers.remove(consumer)

    @property
    def delivery_lock(self) -> Any:
        """Held for a whole delivery; hold it to order a check before a publish."""
        return self._lock

    @property
    def consumer_count(self) -> int:
        with self._lock:
            return len(self._consumers)

    def publish_data(self, session_id: str, data: str) -> None:
        self._publish(DATA_CHANNEL, {'sessionId': session_id, 'data': data})

    def publish_status(self, session_id: str, status: str, error_message: Optional[str] = None) -> None:
        self._publish(STATUS_CHANNEL, {
            'sessionId': session_id,
            'status': status,
            'errorMessage': error_message,
        })

    def _publish(self, channel: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            for consumer in list(self._consumers):
                if consumer not in self._consumers:
                    # detached by an earlier consumer during this delivery
                    continue
                try:
                    consumer(channel, payload)
                except Exception as e:
                    self.logger.error(f"Event consumer failed on {channel}: {e}")
