"""
Console demo: chat with the studio booking agent in the terminal.

Runs the real conversation engine (classifier, strategies, draft engine,
quality gate, learning) against the in-memory store, calendar and
payment gateway. Model calls go to the configured OpenAI model, so
``OPENAI_API_KEY`` (or the variable named by ``LLM_API_KEY_ENV``) must be set.

Usage:
    python console_demo.py
    python console_demo.py --scenario booking
    python console_demo.py --scenario info

Type ``paid`` to simulate the deposit clearing for the pending booking.
"""

import argparse
import asyncio
import logging
import os
import sys

from studio_agent.config import settings
from studio_agent.engine import ConversationEngine, TurnResult
from studio_agent.tools.calendar import InMemoryCalendar
from studio_agent.tools.catalog import SEED_PACKAGES
from studio_agent.tools.llm import OpenAIChatModel
from studio_agent.tools.messaging import LoggingNotificationSink, OutboxAdapter
from studio_agent.tools.payments import InMemoryPaymentGateway
from studio_agent.tools.store import InMemoryStore

logger = logging.getLogger(__name__)

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

CHANNEL = "console"
SENDER_ID = "console-user"


class ConsoleSession:
    """Drives one customer's conversation through the engine."""

    # Pre-scripted scenarios for --scenario flag
    SCENARIOS: dict[str, list[str]] = {
        "booking": [
            "Hi! What packages do you have?",
            "I want the Gold package",
            "next Tuesday at 10am",
            "Jane Wanjiku, 0712345678",
            "CONFIRM",
            "paid",
        ],
        "info": [
            "What are your opening hours?",
            "Can I bring my husband and our dog to the session?",
            "How much is the deposit for the VIP package?",
        ],
        "handoff": [
            "I've been waiting for ages, this is ridiculous",
            "I want to speak to a real person",
        ],
    }

    MAX_INPUT_LENGTH = 1000

    def __init__(self, engine: ConversationEngine) -> None:
        self.engine = engine

    def agent_say(self, text: str) -> None:
        print(f"{GREEN}{BOLD}[Studio]{RESET} {GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def _banner(self, title: str) -> None:
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  STUDIO BOOKING AGENT - {title}{RESET}")
        print(f"{BOLD}  Business: {settings.business.name}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")
        print()

    async def run_scenario(self, scenario: str) -> None:
        """Auto-play a pre-scripted scenario for demo purposes."""
        steps = self.SCENARIOS.get(scenario)
        if not steps:
            print(f"{RED}Unknown scenario: {scenario}{RESET}")
            return
        self._banner(f"Scenario: {scenario}")
        for step in steps:
            print(f"\n{BLUE}[Customer] {RESET}{step}")
            await self._process_input(step)
        self._summary()

    async def run(self) -> None:
        self._banner("Console Demo")
        print(f"{BOLD}  Type 'quit' to exit, 'paid' to clear the pending deposit{RESET}")
        while True:
            user_input = (await asyncio.to_thread(input, f"\n{BLUE}[Customer] {RESET}")).strip()
            if not user_input:
                continue
            if user_input.lower() in ("quit", "exit", "q"):
                print(f"\n{DIM}Session ended.{RESET}")
                break
            if len(user_input) > self.MAX_INPUT_LENGTH:
                self.agent_say("That was quite long. Could you keep it brief for me?")
                continue
            await self._process_input(user_input)
        self._summary()

    async def _process_input(self, text: str) -> None:
        if text.lower() == "paid":
            await self._simulate_payment()
            return
        result = await self.engine.handle_message(CHANNEL, SENDER_ID, text)
        self._show(result)

    def _show(self, result: TurnResult) -> None:
        if result.skipped:
            self.system_log(f"No AI reply ({result.skipped}); a team member will take over")
            return
        if result.analysis is not None:
            self.system_log(
                f"Intent: {result.analysis.primary_intent.value} "
                f"({result.analysis.confidence:.2f}), tone: {result.analysis.emotional_tone.value}"
            )
        if result.strategy:
            self.system_log(f"Strategy: {result.strategy} -> {result.action}")
        if result.quality is not None:
            q = result.quality
            self.system_log(
                f"Quality: overall={q.score.overall:.1f} passed={q.passed}"
                f"{' (degraded)' if q.degraded else ''}"
                f"{' (improved)' if q.improved_response else ''}"
            )
        if result.escalation is not None:
            print(f"{YELLOW}  !! Escalated: {result.escalation.reason}{RESET}")
        if result.draft is not None:
            d = result.draft
            self.system_log(
                f"Draft: step={d.step.value} service={d.service} date={d.date} "
                f"time={d.time} name={d.name} phone={d.recipient_phone}"
            )
        if result.reply:
            self.agent_say(result.reply)

    async def _simulate_payment(self) -> None:
        customer = await self.engine.store.find_customer_by_channel(CHANNEL, SENDER_ID)
        draft = await self.engine.drafts.get(customer.id) if customer else None
        if draft is None or not draft.booking_id:
            self.system_log("No pending deposit to confirm")
            return
        self.system_log(f"Deposit cleared for {draft.booking_id}")
        await self.engine.handle_payment_confirmation(draft.booking_id)
        outbox = self.engine.messaging
        if isinstance(outbox, OutboxAdapter) and outbox.sent:
            self.agent_say(outbox.sent[-1][1])

    def _summary(self) -> None:
        stats = self.engine.quality.quality_stats()
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Conversation complete.{RESET}")
        print(
            f"{DIM}  Quality: {stats['checked']} checked, pass rate {stats['pass_rate']:.0%}, "
            f"{stats['improvements']} improved, {stats['escalations']} escalated{RESET}"
        )
        print(f"{BOLD}{'=' * 60}{RESET}")


def build_demo_engine() -> ConversationEngine:
    store = InMemoryStore()
    store.seed_packages(SEED_PACKAGES)
    return ConversationEngine(
        store,
        OpenAIChatModel(),
        InMemoryPaymentGateway(),
        messaging=OutboxAdapter(),
        calendar=InMemoryCalendar(),
        sink=LoggingNotificationSink(),
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Studio booking agent console demo.")
    parser.add_argument(
        "--scenario",
        type=str,
        default=None,
        choices=sorted(ConsoleSession.SCENARIOS),
        help="Auto-play a pre-scripted conversation.",
    )
    args = parser.parse_args()

    if not os.getenv(settings.model.api_key_env):
        logger.error("%s is not set; the console demo needs a model API key", settings.model.api_key_env)
        sys.exit(1)

    session = ConsoleSession(build_demo_engine())
    if args.scenario:
        asyncio.run(session.run_scenario(args.scenario))
    else:
        asyncio.run(session.run())


if __name__ == "__main__":
    main()
