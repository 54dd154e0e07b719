"""MQTT subscription adapter.

Owns the paho client, subscribes the configured mesh topics on every
(re)connect and forwards raw ``(topic, payload)`` pairs to a callback. The
callback runs on paho's network thread.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

import paho.mqtt.client as mqtt

LOGGER = logging.getLogger(__name__)

MessageCallback = Callable[[str, bytes], None]


@dataclass(frozen=True)
class MqttConfig:
    """Broker connection settings."""

    host: str
    port: int = 1883
    client_id: str = "meshwatch"
    topics: Tuple[str, ...] = field(default_factory=lambda: ("msh/#",))
    username: Optional[str] = None
    password: Optional[str] = None
    keepalive: int = 60
    qos: int = 0


class MqttSubscriber:
    """Subscribe to mesh traffic and hand each message to ``on_message``."""

    def __init__(self, config: MqttConfig, on_message: MessageCallback) -> None:
        self._config = config
        self._callback = on_message
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=config.client_id)
        if config.username:
            self._client.username_pw_set(config.username, config.password)
        self._client.reconnect_delay_set(min_delay=1, max_delay=60)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._running = False

    def start(self) -> None:
        """Connect and start paho's network thread.

        A failed initial connection raises; paho handles reconnects after that.
        """

        LOGGER.info("Connecting to MQTT broker %s:%s", self._config.host, self._config.port)
        self._client.connect(self._config.host, self._config.port, keepalive=self._config.keepalive)
        self._running = True
        self._client.loop_start()

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._client.disconnect()
        self._client.loop_stop()
        LOGGER.info("MQTT subscriber stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            LOGGER.warning("MQTT connect refused: %s", reason_code)
            return
        LOGGER.info("Connected to MQTT broker %s", self._config.host)
        # Subscribing here restores subscriptions after every reconnect.
        for topic in self._config.topics:
            client.subscribe(topic, qos=self._config.qos)
            LOGGER.info("Subscribed to %s", topic)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        if not self._running:
            return
        LOGGER.warning("Unexpected MQTT disconnect (%s); paho will reconnect", reason_code)

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        try:
            self._callback(message.topic, message.payload)
        except Exception:
            LOGGER.exception("Error while handling message on %s", message.topic)
