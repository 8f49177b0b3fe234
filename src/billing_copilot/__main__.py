"""CLI entry point for billing-copilot."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from billing_copilot.ai.events import AssistantEvent, EventType, TurnOutcome
from billing_copilot.ai.handler import TurnRequest
from billing_copilot.ai.tools.registry import ToolRegistry
from billing_copilot.app import CopilotApp
from billing_copilot.config import AppConfig, load_config
from billing_copilot.log import setup_logging
from billing_copilot.services.crm import CrmService
from billing_copilot.storage.database import Database

EXIT_WORDS = frozenset({"exit", "quit", "/q"})


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="billing-copilot",
        description="Tool-using assistant for invoicing and CRM",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("chat", "Start an interactive session"),
        ("config-check", "Validate configuration"),
        ("tools", "Print the tool catalogue sent to the model"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to chat
        args.command = "chat"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "tools":
        _print_tools(args.config, args.env)
    elif args.command == "chat":
        _chat(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml first", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    assistant = config.assistant
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Provider: {assistant.provider.value} (configured={config.provider_configured(assistant.provider)})")
    if assistant.fallback_provider is not None:
        configured = config.provider_configured(assistant.fallback_provider)
        print(f"  Fallback: {assistant.fallback_provider.value} (configured={configured})")
    print(f"  Tool rounds per turn: {assistant.max_tool_iterations}")
    print(f"  Monthly message limit: {assistant.monthly_message_limit}")
    print(f"  Confirmation TTL: {assistant.pending_ttl_minutes} min")


def _print_tools(config_path: str, env_path: str) -> None:
    config = _load_or_exit(config_path, env_path)
    registry = ToolRegistry()
    # Tool schemas do not touch the database, so an unopened one is enough.
    registry.discover_and_register(CrmService(Database(":memory:")), config.assistant.currency_rates)
    print(json.dumps(registry.serialize_all(), ensure_ascii=False, indent=2))


def _render_event(event: AssistantEvent) -> None:
    match event.type:
        case EventType.USAGE:
            usage = event.data["usage"]
            print(f"[quota] {usage['used']}/{usage['limit']} ({usage['period_label']})")
        case EventType.TOOL_RESULT:
            result = event.data["result"]
            status = "échec" if event.data["failed"] else "ok"
            summary = result.get("message") or result.get("summary") or ""
            print(f"[outil {event.data['tool_name']}: {status}] {summary}")
        case EventType.ACTION_CARD:
            card = event.data["card"]
            details = " ".join(str(card[key]) for key in ("subtitle", "amount", "href") if card.get(key))
            print(f"[carte] {card['title']} {details}".rstrip())
        case EventType.MESSAGE_TOKEN:
            print(event.data["delta"], end="", flush=True)
        case EventType.MESSAGE_COMPLETE:
            print()
        case EventType.CONFIRMATION_REQUIRED:
            print(f"[confirmation] {event.data['confirmation']['summary']}")
        case EventType.ERROR:
            print(f"[erreur] {event.data['message']}", file=sys.stderr)


def _chat(config_path: str, env_path: str) -> None:
    """Run turns from stdin until EOF or an exit word."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level)

    async def _async_main() -> None:
        app = CopilotApp(config)
        try:
            await app.start()
        except Exception as e:
            print(f"Startup error: {e}", file=sys.stderr)
            await app.db.close()
            sys.exit(1)

        conversation_id: str | None = None
        try:
            while True:
                try:
                    text = await asyncio.to_thread(input, "> ")
                except EOFError:
                    break
                if text.strip().lower() in EXIT_WORDS:
                    break

                request = TurnRequest(user_id=config.user_id, conversation_id=conversation_id, message=text)
                while True:
                    confirmations: list[str] = []
                    seen_conversations: list[str] = []

                    def _sink(event: AssistantEvent) -> None:
                        _render_event(event)
                        if event.conversation_id:
                            seen_conversations.append(event.conversation_id)
                        if event.type == EventType.CONFIRMATION_REQUIRED:
                            confirmations.append(event.data["confirmation"]["id"])

                    outcome = await app.run_turn(request, _sink)
                    if seen_conversations:
                        conversation_id = seen_conversations[-1]
                    if outcome != TurnOutcome.AWAITING_CONFIRMATION or not confirmations:
                        break
                    answer = await asyncio.to_thread(input, "Confirmer ? [o/N] ")
                    if answer.strip().lower() not in ("o", "oui", "y", "yes"):
                        print("Action annulée.")
                        break
                    request = TurnRequest(
                        user_id=config.user_id,
                        conversation_id=conversation_id,
                        tool_confirmation_id=confirmations[-1],
                    )
        finally:
            await app.stop()

    try:
        asyncio.run(_async_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
