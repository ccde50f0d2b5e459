import logging
import threading
from enum import Enum

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionStatus:
    """Transport connection state shared with the health endpoints.

    Writes come from the MQTT network thread and are serialized by a lock.
    Reads return the last committed state without taking the lock.
    """

    def __init__(self):
        self._state = ConnectionState.DISCONNECTED
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def set(self, state: ConnectionState) -> None:
        with self._lock:
            previous = self._state
            self._state = state

        if previous != state:
            logger.info(f"Transport state {previous.value} -> {state.value}")


_status = ConnectionStatus()


def get_connection_status() -> ConnectionStatus:
    return _status
