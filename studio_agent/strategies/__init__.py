from studio_agent.strategies.base import (
    ResponseStrategy,
    StrategyContext,
    StrategyDeps,
    StrategyResult,
)
from studio_agent.strategies.booking import BookingStrategy
from studio_agent.strategies.faq import FaqStrategy
from studio_agent.strategies.package_inquiry import PackageInquiryStrategy
from studio_agent.strategies.registry import (
    StrategyRouter,
    create_strategy,
    get_registered_strategies,
    register_strategy,
)

__all__ = [
    "ResponseStrategy", "StrategyContext", "StrategyDeps", "StrategyResult",
    "FaqStrategy", "PackageInquiryStrategy", "BookingStrategy",
    "StrategyRouter", "create_strategy", "register_strategy", "get_registered_strategies",
]
