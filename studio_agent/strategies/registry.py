"""
Strategy registry and router.

Strategies are registered by name so the engine can build the router
without importing each strategy module directly. The router evaluates
``can_handle`` in descending priority and returns the first non-null
response; if every eligible strategy declines, a clarification reply is
returned with the draft untouched.
"""

import logging
from typing import Callable, Optional

from studio_agent.prompts.prompt_templates import CLARIFICATION_REPLY
from studio_agent.strategies.base import (
    ResponseStrategy,
    StrategyContext,
    StrategyDeps,
    StrategyResult,
    updated_history,
)

logger = logging.getLogger(__name__)

_STRATEGY_REGISTRY: dict[str, Callable[[StrategyDeps], ResponseStrategy]] = {}


def register_strategy(name: str, factory: Callable[[StrategyDeps], ResponseStrategy]) -> None:
    """Register a strategy factory by name."""
    _STRATEGY_REGISTRY[name] = factory
    logger.debug("Strategy registered: %s", name)


def create_strategy(name: str, deps: StrategyDeps) -> ResponseStrategy:
    """Create a strategy instance by registered name.

    Raises:
        KeyError: If the strategy name is not registered.
    """
    if name not in _STRATEGY_REGISTRY:
        registered = list(_STRATEGY_REGISTRY.keys())
        raise KeyError(f"Strategy '{name}' not registered. Available: {registered}")
    return _STRATEGY_REGISTRY[name](deps)


def get_registered_strategies() -> list[str]:
    """Return names of all registered strategies."""
    return list(_STRATEGY_REGISTRY.keys())


class StrategyRouter:
    """Picks exactly one strategy per turn."""

    def __init__(self, strategies: list[ResponseStrategy]) -> None:
        self._strategies = sorted(strategies, key=lambda s: s.priority, reverse=True)

    @classmethod
    def from_registry(cls, deps: StrategyDeps, names: Optional[list[str]] = None) -> "StrategyRouter":
        return cls([create_strategy(name, deps) for name in (names or get_registered_strategies())])

    @property
    def strategies(self) -> list[ResponseStrategy]:
        return list(self._strategies)

    async def route(self, ctx: StrategyContext) -> StrategyResult:
        for strategy in self._strategies:
            if not strategy.can_handle(ctx):
                continue
            result = await strategy.generate_response(ctx)
            if result is not None:
                logger.info("Turn handled by %s (%s)", strategy.name, result.action)
                return result
            logger.debug("%s declined at generation time", strategy.name)

        logger.info("No strategy handled the message; asking for clarification")
        return StrategyResult(
            reply=CLARIFICATION_REPLY,
            draft=ctx.draft,
            history=updated_history(ctx.history, ctx.message, CLARIFICATION_REPLY),
            action="clarify",
            strategy="fallback",
        )


def _auto_register() -> None:
    """Auto-register the built-in strategies. Called once at import time."""
    from studio_agent.strategies.booking import BookingStrategy
    from studio_agent.strategies.faq import FaqStrategy
    from studio_agent.strategies.package_inquiry import PackageInquiryStrategy

    register_strategy("faq", FaqStrategy)
    register_strategy("package_inquiry", PackageInquiryStrategy)
    register_strategy("booking", BookingStrategy)


_auto_register()
