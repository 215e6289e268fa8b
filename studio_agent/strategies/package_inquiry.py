"""
Package inquiry strategy: catalog listings, deposits and package selection.

Branches, in order:
  type filter (studio / outdoor), with a graceful reply when that type is empty
  deposit question, scoped to named packages or "the two" from recent replies
  details of every package ("tell me about each")
  details of one package (with a switch prompt when a different draft exists)
  implicit selection: a package named without asking for details is put
    into the draft, which advances to the date step
  summary listing
"""

import re
from typing import Optional

from studio_agent.conversation.draft_engine import Extraction
from studio_agent.logging_context import get_turn_logger
from studio_agent.prompts.prompt_templates import booking_step_message, format_for_platform
from studio_agent.schemas.booking_schema import DraftStep, Package, PackageType
from studio_agent.strategies.base import ResponseStrategy, StrategyContext, StrategyResult
from studio_agent.tools.catalog import (
    find_mentioned_packages,
    format_deposit_line,
    format_package_details,
    format_package_summary,
)

logger = get_turn_logger(__name__)

IMAGE_REQUEST_RE = re.compile(
    r"backdrop|background|studio set|flower wall|portfolio"
    r"|show.*\b(?:images?|photos?|pictures?|portfolio)\b|see.*\b(?:images?|photos?|pictures?|examples?)\b",
    re.IGNORECASE,
)
PACKAGE_QUERY_RE = re.compile(
    r"package|price|pricing|cost|how much|offer|photoshoot|shoot\b|what do you have"
    r"|what are|show me|tell me about|how about|what about|deposit",
    re.IGNORECASE,
)
PAYMENT_RE = re.compile(r"\b(?:deposit|payment|pay)\b", re.IGNORECASE)
DEPOSIT_RE = re.compile(r"deposit|down payment|initial payment|advance payment", re.IGNORECASE)
RECENT_REFERENCE_RE = re.compile(r"\bthe (?:two|both)\b|\bboth\b|\bthese\b|\bthose\b|\bthem\b", re.IGNORECASE)
ALL_DETAILS_RE = re.compile(
    r"tell me about (?:each|all|every)|what (?:are|is) (?:each|all|every)"
    r"|details (?:about|on) (?:each|all|every)|describe (?:each|all|every)",
    re.IGNORECASE,
)
DETAILS_RE = re.compile(
    r"tell me about|what is|what's|details|include|come with|feature|how about|what about",
    re.IGNORECASE,
)
OUTDOOR_RE = re.compile(r"\boutdoor\b", re.IGNORECASE)
STUDIO_RE = re.compile(r"\b(?:studio|indoor)\b", re.IGNORECASE)

MAX_RECENT_PACKAGES = 2


class PackageInquiryStrategy(ResponseStrategy):
    """Answers questions about packages and captures an implicit package choice."""

    name = "package_inquiry"
    priority = 50

    def can_handle(self, ctx: StrategyContext) -> bool:
        if IMAGE_REQUEST_RE.search(ctx.message):
            return False
        if not PACKAGE_QUERY_RE.search(ctx.message):
            return False
        if ctx.is_booking_continuation() and not PAYMENT_RE.search(ctx.message):
            return False
        return True

    async def generate_response(self, ctx: StrategyContext) -> Optional[StrategyResult]:
        catalog = await self.deps.catalog.get_packages()
        if not catalog:
            logger.warning("Package catalog is empty")
            return None
        message = ctx.message

        packages, type_label, requested_type = self._filter_by_type(message, catalog)
        if not packages:
            other = "studio" if requested_type == PackageType.OUTDOOR else "outdoor"
            reply = (
                f"I'm so sorry, but we don't currently have any {requested_type.value} packages "
                f"available. However, we do have beautiful {other} packages that might interest "
                "you! Would you like to see those instead? 💖"
            )
            return self._reply(ctx, reply, ctx.draft, "no_packages_of_type")

        if DEPOSIT_RE.search(message):
            return self._reply(ctx, self._deposit_reply(ctx, packages), ctx.draft, "deposit_info")

        if ALL_DETAILS_RE.search(message):
            listing = "\n\n".join(format_package_details(p) for p in packages)
            reply = (
                f"I'm so delighted to share the details of all our {type_label}packages! "
                "Each one is thoughtfully crafted to capture this precious time in your life:"
                f"\n\n{listing}\n\nWhich package would you like to book? 💖"
            )
            return self._reply(ctx, reply, ctx.draft, "package_details_all")

        mentioned = find_mentioned_packages(message, packages)
        selected = mentioned[0] if mentioned else None
        wants_details = bool(DETAILS_RE.search(message))

        if selected is not None and (wants_details or (ctx.draft and ctx.draft.booking_id)):
            return self._reply(ctx, self._details_reply(ctx, selected), ctx.draft, "package_details")

        if selected is not None:
            return await self._select_package(ctx, selected)

        listing = "\n\n".join(format_package_summary(p) for p in packages)
        reply = (
            f"I'm so delighted to share our {type_label}packages with you! Here they are:"
            f"\n\n{listing}\n\nIf you'd like to know more about any specific package, just ask! 💖"
        )
        return self._reply(ctx, reply, ctx.draft, "package_list")

    @staticmethod
    def _filter_by_type(
        message: str, catalog: list[Package]
    ) -> tuple[list[Package], str, Optional[PackageType]]:
        if OUTDOOR_RE.search(message):
            return [p for p in catalog if p.type == PackageType.OUTDOOR], "outdoor ", PackageType.OUTDOOR
        if STUDIO_RE.search(message):
            return [p for p in catalog if p.type == PackageType.STUDIO], "studio ", PackageType.STUDIO
        return catalog, "", None

    def _deposit_reply(self, ctx: StrategyContext, packages: list[Package]) -> str:
        mentioned = find_mentioned_packages(ctx.message, packages)
        recent: list[Package] = []
        for turn in ctx.recent_assistant_turns(3):
            for package in find_mentioned_packages(turn, packages):
                if package not in recent:
                    recent.append(package)

        if RECENT_REFERENCE_RE.search(ctx.message) and recent:
            to_show = recent[:MAX_RECENT_PACKAGES]
        elif mentioned:
            to_show = mentioned
        else:
            to_show = packages
        lines = "\n".join(format_deposit_line(p) for p in to_show)
        return (
            f"Here are the deposit amounts:\n\n{lines}\n\n"
            "The remaining balance is due after your photoshoot. 💖"
        )

    @staticmethod
    def _details_reply(ctx: StrategyContext, package: Package) -> str:
        details = format_package_details(package)
        draft = ctx.draft
        if draft is not None and draft.service and draft.service != package.name:
            return (
                f"{details}\n\nI see you were interested in the {draft.service}. Would you like "
                f"to switch to the {package.name} instead, or continue with the {draft.service}? 💖"
            )
        return f"{details}\n\nThis package is perfect for capturing beautiful moments! Would you like to book it? 💖"

    async def _select_package(self, ctx: StrategyContext, package: Package) -> StrategyResult:
        drafts = self.deps.drafts
        draft = ctx.draft or await drafts.get_or_create(ctx.customer_id)
        await drafts.merge(draft, Extraction(service=package.name))
        drafts.sync_step(draft)
        await drafts.save(draft)
        logger.info("Package %s selected via inquiry", package.name)

        if draft.step == DraftStep.COLLECT_DATE:
            next_question = 'When would you like to come in for the shoot? (e.g., "next Tuesday at 10am") 🗓️'
        else:
            next_question = booking_step_message(draft.step, draft, platform=ctx.platform)
        reply = (
            f"{format_package_details(package)}\n\n"
            f"I've noted you're interested in the {package.name}. {next_question}"
        )
        return self._reply(ctx, reply, draft, "package_selected")

    def _reply(self, ctx: StrategyContext, reply: str, draft, action: str) -> StrategyResult:
        return self.result(ctx, format_for_platform(reply, ctx.platform), draft, action)
