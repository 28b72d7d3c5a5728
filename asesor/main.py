"""CLI entry point for chatting with the advisor from a terminal.

Messages go through the same adapter as the webhook (greeting fast path,
context rebuild, agent loop) but replies are printed instead of sent over
WhatsApp and the message log is kept in memory.

Usage:
    uv run python -m asesor.main                      # quiet
    uv run python -m asesor.main --debug              # show API calls
    uv run python -m asesor.main --sender +5213312345678
"""

from __future__ import annotations

import argparse
import logging
import uuid
from dataclasses import replace

from dotenv import load_dotenv

from asesor.channel import create_whatsapp_adapter
from asesor.config import POLICIES, get_policy, load_settings
from asesor.models import InboundMessage
from asesor.services.message_store import InMemoryMessageStore
from asesor.services.twilio_client import ConsoleChannel

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asesor").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Asesor WhatsApp CLI")
    parser.add_argument("--debug", action="store_true", help="Show all log messages including HTTP requests")
    parser.add_argument("--sender", default=None, help="Phone number to chat as (default: random)")
    parser.add_argument("--policy", choices=sorted(POLICIES), default=None, help="Agent policy preset")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    settings = load_settings()
    if args.policy:
        settings = replace(settings, policy=get_policy(args.policy))

    adapter = create_whatsapp_adapter(
        settings,
        outbound=ConsoleChannel(),
        store=InMemoryMessageStore(),
    )
    sender = args.sender or f"+52{uuid.uuid4().int % 10**10:010d}"

    print("\n" + "=" * 60)
    print("  Asesor WhatsApp - CLI Chat")
    print("=" * 60)
    print(f"  Chatting as {sender} (policy: {settings.policy.name})")
    print("  Commands: 'quit' to exit.")
    print("=" * 60 + "\n")

    while True:
        try:
            user_input = input("Cliente: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\n¡Hasta luego!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit", "q"):
            print("\n¡Hasta luego!")
            break

        try:
            adapter.handle(InboundMessage(
                body=user_input,
                sender=f"whatsapp:{sender}",
                correlation_id=f"cli-{uuid.uuid4().hex[:12]}",
            ))
        except KeyboardInterrupt:
            print("\n\n¡Hasta luego!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nAsesor: Lo siento, algo salió mal: {e}\n")


if __name__ == "__main__":
    main()
