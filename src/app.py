"""Application entry point for the chatwarden bot."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from telethon import errors, events

import settings
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_transport import TelegramBotTransport
from adapters.telegram_mapper import chat_action_to_raw_event, to_raw_event
from adapters.telegram_transport import TelegramTransport
from client import build_client
from core.channel import EventChannel
from core.errors import TriggerError
from core.groups import GroupMembershipHandler
from core.models import MATCH_KINDS
from core.ports import TransportPort
from core.processor import MessageProcessor
from core.rate_limiter import RateLimiter
from core.rules_engine import TriggerEngine
from core.service import ControlService
from core.spam import SpamDetector
from core.sweeper import BlockSweeper, TriggerRefresher

NAME = "CHATWARDEN"
FONT = "tarty-1"


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
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", ["API_HASH", "BOT_API"]):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level_name = str(os.getenv("LOG_LEVEL") or config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/chatwarden.log")
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


def _open_storage() -> SQLiteStorage:
    directory = os.path.dirname(settings.DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _build_service(
    storage: SQLiteStorage,
    transport: Optional[TransportPort] = None,
    engine: Optional[TriggerEngine] = None,
    limiter: Optional[RateLimiter] = None,
    spam: Optional[SpamDetector] = None,
) -> ControlService:
    service = ControlService(
        storage=storage,
        trigger_engine=engine if engine is not None else TriggerEngine(),
        rate_limiter=limiter if limiter is not None else RateLimiter(settings.RATE_LIMITS),
        spam_detector=spam if spam is not None else SpamDetector(settings.SPAM),
        transport=transport,
        bot_info={
            "name": settings.BOT_NAME,
            "version": settings.BOT_VERSION,
            "database": settings.DB_PATH,
            "reply_method": settings.REPLY_METHOD,
        },
    )
    service.seed_triggers(settings.TRIGGERS)
    return service


def _build_transport(client) -> TransportPort:
    # Select the transport adapter based on configuration to keep the core
    # processor independent from delivery details.
    if settings.REPLY_METHOD == "bot":
        bot_token = os.getenv("BOT_API")
        if not bot_token:
            raise RuntimeError("BOT_API is required when reply.method=bot")
        return TelegramBotTransport(bot_token)
    if settings.REPLY_METHOD == "account":
        return TelegramTransport(client)
    raise RuntimeError("reply.method must be 'account' or 'bot'")


async def _member_count(client, chat_id) -> Optional[int]:
    """Current participant count, or None when Telegram will not tell us."""

    try:
        participants = await client.get_participants(chat_id, limit=0)
    except (ConnectionError, errors.RPCError):
        logging.getLogger(__name__).debug("Member count unavailable for %s", chat_id, exc_info=True)
        return None
    return getattr(participants, "total", None)


async def _serve(
    client,
    processor: MessageProcessor,
    channel: EventChannel,
    sweeper: BlockSweeper,
    refresher: TriggerRefresher,
    service: ControlService,
) -> None:
    consumer = asyncio.create_task(processor.run(channel, settings.PIPELINE.max_in_flight))
    sweeping = asyncio.create_task(sweeper.run_forever())
    refreshing = asyncio.create_task(refresher.run_forever())
    service.running = True
    try:
        await client.run_until_disconnected()
    finally:
        service.running = False
        sweeper.stop()
        refresher.stop()
        # Drain what is already queued before exiting.
        await channel.close()
        await asyncio.gather(consumer, sweeping, refreshing, return_exceptions=True)


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting %s %s", settings.BOT_NAME, settings.BOT_VERSION)

    storage = _open_storage()
    client = build_client()
    transport = _build_transport(client)
    engine = TriggerEngine()
    limiter = RateLimiter(settings.RATE_LIMITS)
    spam = SpamDetector(settings.SPAM)
    service = _build_service(storage, transport, engine, limiter, spam)
    logger.info("Selected reply method - %s", settings.REPLY_METHOD)

    processor = MessageProcessor(
        trigger_engine=engine,
        rate_limiter=limiter,
        spam_detector=spam,
        storage=storage,
        transport=transport,
        data_collection=settings.DATA_COLLECTION,
        command_prefix=settings.PIPELINE.command_prefix,
    )
    channel = EventChannel(maxsize=settings.PIPELINE.queue_size)
    sweeper = BlockSweeper(limiter, spam, interval=settings.PIPELINE.sweep_interval)
    refresher = TriggerRefresher(service, interval=settings.PIPELINE.trigger_refresh_interval)
    membership = GroupMembershipHandler(storage, transport, settings.GROUPS)

    # The handler only maps and enqueues; all filtering happens in the core
    # processor for consistency and testability.
    @client.on(events.NewMessage())
    async def handler(event) -> None:
        try:
            await channel.publish(to_raw_event(event.message))
        except Exception:
            logger.exception("Error while queueing message")

    @client.on(events.ChatAction())
    async def membership_handler(event) -> None:
        try:
            raw_event = chat_action_to_raw_event(event)
            if raw_event is None:
                return
            raw_event["member_count"] = await _member_count(client, event.chat_id)
            await membership.handle(raw_event)
        except Exception:
            logger.exception("Error while handling group membership change")

    # Explicit lifecycle management makes start/shutdown behavior obvious.
    client.start()
    logger.info("Client connected. Listening for incoming messages...")
    client.loop.run_until_complete(_serve(client, processor, channel, sweeper, refresher, service))


def _print_triggers(service: ControlService) -> None:
    rules = service.list_trigger_rules()
    if not rules:
        print("No triggers configured.")
        return
    for index, rule in enumerate(rules, start=1):
        flags = [rule.match_kind]
        if rule.case_sensitive:
            flags.append("case-sensitive")
        if not rule.active:
            flags.append("inactive")
        print(f"{index}. {rule.keyword!r} -> {rule.response!r} ({', '.join(flags)})")


def _triggers(args: argparse.Namespace) -> int:
    _configure_logging()
    service = _build_service(_open_storage())
    try:
        if args.action == "add":
            service.add_trigger_rule(args.keyword, args.response, args.match_kind, args.case_sensitive)
            print(f"Trigger added: {args.keyword!r}")
        elif args.action == "remove":
            service.remove_trigger_rule(args.keyword)
            print(f"Trigger removed: {args.keyword!r}")
        else:
            _print_triggers(service)
    except TriggerError as exc:
        print(str(exc))
        return 1
    return 0


def _stats() -> int:
    _configure_logging()
    service = _build_service(_open_storage())
    print(json.dumps(service.get_stats(), indent=2, default=str))
    return 0


def _send(args: argparse.Namespace) -> int:
    _configure_logging()
    client = build_client()
    transport = _build_transport(client)
    service = _build_service(_open_storage(), transport)

    async def _run_send() -> bool:
        await client.connect()
        try:
            if not await client.is_user_authorized():
                print("Authorization required. Run `chatwarden run` once to log in.")
                return False
            return await service.send_message(args.conversation, args.text)
        finally:
            await client.disconnect()

    sent = client.loop.run_until_complete(_run_send())
    print("Message sent." if sent else "Failed to send message.")
    return 0 if sent else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="chatwarden")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bot")
    subparsers.add_parser("stats", help="Print store and rate-limit statistics")

    triggers = subparsers.add_parser("triggers", help="Manage auto-response triggers")
    trigger_actions = triggers.add_subparsers(dest="action")
    trigger_actions.add_parser("list", help="List stored triggers")
    add = trigger_actions.add_parser("add", help="Add a trigger")
    add.add_argument("keyword")
    add.add_argument("response")
    add.add_argument("--match-kind", choices=MATCH_KINDS, default="exact")
    add.add_argument("--case-sensitive", action="store_true")
    remove = trigger_actions.add_parser("remove", help="Remove a trigger")
    remove.add_argument("keyword")

    send = subparsers.add_parser("send", help="Send a message to a conversation")
    send.add_argument("conversation")
    send.add_argument("text")

    args = parser.parse_args(argv)
    if args.command == "triggers":
        return _triggers(args)
    if args.command == "stats":
        return _stats()
    if args.command == "send":
        return _send(args)
    _run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
