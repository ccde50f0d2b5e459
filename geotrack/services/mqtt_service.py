import asyncio
import logging
from typing import Any, Optional

import paho.mqtt.client as mqtt

from geotrack.config.settings import get_settings
from geotrack.core.connection import ConnectionState, get_connection_status
from geotrack.core.topics import subscription_filters
from geotrack.services.ingestion_service import get_ingestion_pipeline

logger = logging.getLogger(__name__)


class MqttSubscriber:
    """Feeds device topics from the broker into the ingestion pipeline.

    paho runs its network loop on its own thread and reconnects by itself.
    Each message is handed to the asyncio loop as an independent task so the
    network thread never waits on a store write.
    """

    def __init__(self):
        self.settings = get_settings()
        self.status = get_connection_status()
        self.pipeline = get_ingestion_pipeline()
        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def filters(self) -> list[str]:
        return subscription_filters(self.settings.mqtt_topic_prefix)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self.stop()
        self._loop = loop

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.settings.mqtt_client_id,
        )
        client.enable_logger(logger)
        if self.settings.mqtt_username:
            client.username_pw_set(
                self.settings.mqtt_username, self.settings.mqtt_password or None
            )

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_subscribe = self._on_subscribe
        client.on_message = self._on_message

        self.status.set(ConnectionState.CONNECTING)
        logger.info(
            f"Connecting to MQTT broker {self.settings.mqtt_host}:{self.settings.mqtt_port}"
        )
        client.connect_async(
            self.settings.mqtt_host,
            self.settings.mqtt_port,
            keepalive=self.settings.mqtt_keepalive,
        )
        client.loop_start()
        self._client = client

    def stop(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return

        try:
            client.disconnect()
        finally:
            client.loop_stop()
            self.status.set(ConnectionState.DISCONNECTED)
            logger.info("MQTT network loop stopped")

    def _on_connect(
        self, client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any
    ) -> None:
        if reason_code.is_failure:
            logger.error(f"MQTT connection refused: {reason_code}")
            self.status.set(ConnectionState.DISCONNECTED)
            return

        logger.info("Connected to MQTT broker")
        self.status.set(ConnectionState.CONNECTED)

        result, _mid = client.subscribe([(topic, 0) for topic in self.filters])
        if result != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to subscribe to MQTT topics: {mqtt.error_string(result)}")

    def _on_connect_fail(self, _client: mqtt.Client, _userdata: Any) -> None:
        logger.error("MQTT connection error")
        self.status.set(ConnectionState.DISCONNECTED)

    def _on_disconnect(
        self, _client: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any
    ) -> None:
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")
        self.status.set(ConnectionState.DISCONNECTED)

    def _on_subscribe(
        self, _client: mqtt.Client, _userdata: Any, _mid: int, reason_codes: Any, _properties: Any
    ) -> None:
        if any(code.is_failure for code in reason_codes):
            logger.error(f"Failed to subscribe to MQTT topics: {reason_codes}")
            return
        logger.info(f"Subscribed to {', '.join(self.filters)}")

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        if self._loop is None or self._loop.is_closed():
            logger.warning(f"Dropping message on {msg.topic}: event loop unavailable")
            return

        future = asyncio.run_coroutine_threadsafe(
            self.pipeline.handle_message(msg.topic, msg.payload), self._loop
        )
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Message handling failed: {error}", exc_info=error)


_subscriber = MqttSubscriber()


def get_mqtt_subscriber() -> MqttSubscriber:
    return _subscriber
