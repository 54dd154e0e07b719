"""Application entry point for the meshwatch bridge."""

from __future__ import annotations

import argparse
import asyncio
import base64
import binascii
import logging
import os
import secrets
import signal
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.discord_webhook_notifier import DiscordWebhookNotifier
from adapters.mqtt_subscriber import MqttConfig, MqttSubscriber
from adapters.sqlite_node_directory import SQLiteNodeDirectory
from adapters.telegram_bot_notifier import TelegramBotNotifier
from core.codec import TransportCodec
from core.config import DedupConfig, FilterConfig, GroupingConfig
from core.dedup import DEDUP_MODES, FifoKeyCache
from core.dispatcher import GroupDispatcher
from core.errors import MeshwatchError
from core.keys import build_keyring
from core.node_ids import format_user_id
from core.packet_queue import MeshPacketQueue
from core.processor import PacketProcessor
from core.rules_engine import build_rules
from core.scheduler import DrainScheduler

NAME = "MESHWATCH"
FONT = "tarty-1"

# Random per-process id so log lines from overlapping instances can be told apart.
INSTANCE_ID = secrets.token_hex(4)

STATS_INTERVAL_SECONDS = 300


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = f"%(asctime)s [{INSTANCE_ID}] %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    redactions = _collect_redaction_values(config)
    formatter = _RedactingFormatter(redactions, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/meshwatch.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_notifier():
    """Select the notification adapter based on configuration."""

    if settings.NOTIFICATION_METHOD == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when notification_method=bot")
        if not settings.BOT_CHAT_ID:
            raise RuntimeError("notifications.bot_chat_id is required for bot notifications")
        return TelegramBotNotifier(bot_token=bot_token, chat_id=str(settings.BOT_CHAT_ID))
    if settings.NOTIFICATION_METHOD == "discord":
        webhook_url = os.getenv("DISCORD_WEBHOOK_URL")
        if not webhook_url:
            raise RuntimeError("DISCORD_WEBHOOK_URL not set")
        return DiscordWebhookNotifier(
            default_webhook_url=webhook_url,
            channel_webhooks=settings.CHANNEL_WEBHOOKS,
            avatars=settings.AVATARS,
            username=settings.WEBHOOK_USERNAME,
        )
    raise RuntimeError("notification_method must be 'discord' or 'bot'")


def _build_codec() -> TransportCodec:
    codec = TransportCodec(build_keyring(settings.DECRYPTION_KEYS))
    logging.getLogger(__name__).info("%s decryption key(s) are loaded", codec.key_count)
    return codec


def _build_directory() -> SQLiteNodeDirectory:
    directory = SQLiteNodeDirectory(settings.NODE_DB_PATH)
    directory.init_db()
    if settings.NODE_NAMES:
        added = directory.seed_names(settings.NODE_NAMES)
        logging.getLogger(__name__).info("Seeded %s node name(s) into the directory", added)
    return directory


async def _report_stats(processor: PacketProcessor, stop_event: asyncio.Event) -> None:
    logger = logging.getLogger(__name__)
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=STATS_INTERVAL_SECONDS)
        except asyncio.TimeoutError:
            logger.info("Ingest stats: %s", dict(processor.stats))


async def _serve(
    processor: PacketProcessor,
    scheduler: DrainScheduler,
    mqtt_config: MqttConfig,
) -> None:
    logger = logging.getLogger(__name__)
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    # paho calls back on its own thread; hop onto the loop so every mutation
    # of the cache and queue happens on one thread.
    def on_message(topic: str, payload: bytes) -> None:
        loop.call_soon_threadsafe(processor.handle, topic, payload)

    subscriber = MqttSubscriber(mqtt_config, on_message)
    subscriber.start()
    scheduler.start()
    reporter = loop.create_task(_report_stats(processor, stop_event))
    logger.info("Listening for mesh packets...")

    await stop_event.wait()
    logger.info("Shutting down")
    await scheduler.stop()
    subscriber.stop()
    await reporter


def _run() -> None:
    _print_banner()
    load_dotenv()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting meshwatch %s", INSTANCE_ID)

    if settings.DEDUP_MODE not in DEDUP_MODES:
        raise ValueError(f"Unsupported dedup mode: {settings.DEDUP_MODE}")
    dedup_config = DedupConfig(mode=settings.DEDUP_MODE, capacity=settings.DEDUP_CAPACITY)
    grouping_config = GroupingConfig(
        duration_seconds=settings.GROUPING_DURATION_SECONDS,
        drain_interval_seconds=settings.DRAIN_INTERVAL_SECONDS,
        portnums=settings.GROUPED_PORTNUMS,
    )
    filter_config = FilterConfig(
        ignore_nodes=settings.IGNORE_NODES,
        stale_after_seconds=settings.STALE_AFTER_SECONDS,
    )
    rules = build_rules(settings.SUPPRESS_RULES_CONFIG)
    logger.info("%s suppression rules are loaded", len(rules))

    codec = _build_codec()
    directory = _build_directory()
    notifier = _build_notifier()
    logger.info("Selected notification method - %s", settings.NOTIFICATION_METHOD)

    cache = FifoKeyCache(dedup_config.capacity)
    queue = MeshPacketQueue()
    processor = PacketProcessor(
        codec=codec,
        cache=cache,
        queue=queue,
        directory=directory,
        dedup_config=dedup_config,
        grouped_portnums=grouping_config.portnums,
    )
    dispatcher = GroupDispatcher(
        directory=directory,
        notifier=notifier,
        rules=rules,
        filter_config=filter_config,
    )
    scheduler = DrainScheduler(
        queue=queue,
        dispatcher=dispatcher,
        grouping_duration=grouping_config.duration_seconds,
        interval=grouping_config.drain_interval_seconds,
    )
    mqtt_config = MqttConfig(
        host=settings.MQTT_HOST,
        port=settings.MQTT_PORT,
        client_id=settings.MQTT_CLIENT_ID or f"meshwatch-{INSTANCE_ID}",
        topics=settings.MQTT_TOPICS,
        username=os.getenv("MQTT_USERNAME"),
        password=os.getenv("MQTT_PASSWORD"),
        keepalive=settings.MQTT_KEEPALIVE,
    )

    asyncio.run(_serve(processor, scheduler, mqtt_config))


def _parse_capture(value: str) -> bytes:
    """Accept a captured envelope as hex or base64."""

    text = value.strip()
    try:
        return bytes.fromhex(text)
    except ValueError:
        pass
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SystemExit(f"Payload is neither hex nor base64: {exc}") from exc


def _decode(value: str) -> None:
    codec = TransportCodec(build_keyring(settings.DECRYPTION_KEYS))
    try:
        envelope = codec.decode(_parse_capture(value))
    except MeshwatchError as exc:
        print(f"Could not decode: {exc}")
        return

    packet = envelope.packet
    key = "none (unencrypted)" if envelope.key_index is None else f"#{envelope.key_index + 1}"
    print(f"channel:  {envelope.channel_id}")
    print(f"gateway:  {envelope.gateway_id}")
    print(f"packet:   {packet.id} {format_user_id(packet.from_node)} -> {format_user_id(packet.to_node)}")
    print(f"hops:     {packet.hops_away if packet.hops_away is not None else 'unknown'}")
    print(f"key:      {key}")
    print(f"portnum:  {packet.portnum}")
    print(f"payload:  {packet.decoded.payload!r}")


def _list_nodes() -> None:
    directory = SQLiteNodeDirectory(settings.NODE_DB_PATH)
    directory.init_db()
    rows = directory.list_nodes()
    if not rows:
        print("The node directory is empty.")
        return
    for row in rows:
        print(f"{row['node_id']} | {row['long_name']} | {row['short_name']} | {row['hw_model']} | {row['updated_at']}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="meshwatch")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bridge")
    decode_parser = subparsers.add_parser(
        "decode",
        help="Decode one captured ServiceEnvelope with the configured keys.",
    )
    decode_parser.add_argument("payload", help="Envelope bytes as hex or base64")
    subparsers.add_parser("nodes", help="List the node directory")

    args = parser.parse_args(argv)
    if args.command == "decode":
        _decode(args.payload)
        return
    if args.command == "nodes":
        _list_nodes()
        return
    _run()


if __name__ == "__main__":
    main()
