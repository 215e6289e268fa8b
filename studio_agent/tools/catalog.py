"""Package catalog with a read-through cache, name aliases and formatting."""

import logging
import re
import time
from typing import Callable, Optional

from studio_agent.config import settings
from studio_agent.schemas.booking_schema import Package, PackageType
from studio_agent.utils import format_money

logger = logging.getLogger(__name__)

# Hand-maintained: keep in sync with the live catalog when packages are renamed.
# Entries whose package is not in the catalog are ignored at match time.
PACKAGE_ALIASES: dict[str, list[str]] = {
    "Standard Package": ["standard one", "standard", "basic package", "basic one"],
    "Economy Package": ["economy one", "economy"],
    "Executive Package": ["executive one", "executive"],
    "Gold Package": ["gold one", "gold"],
    "Platinum Package": ["platinum one", "platinum"],
    "VIP Package": ["vip one", "vip"],
    "VVIP Package": ["vvip one", "vvip", "v vip", "v-vip"],
}

SEED_PACKAGES: list[Package] = [
    Package(
        name="Standard Package", type=PackageType.STUDIO, price=10000, deposit=2000,
        duration="1 hr 30 mins", images=6, makeup=True, outfits=2, styling=True,
        notes="Standard indoor studio maternity package.",
    ),
    Package(
        name="Economy Package", type=PackageType.STUDIO, price=15000, deposit=2000,
        duration="2 hrs", images=12, makeup=True, outfits=3, styling=True,
        notes="Economy indoor studio maternity package.",
    ),
    Package(
        name="Executive Package", type=PackageType.STUDIO, price=20000, deposit=2000,
        duration="2 hrs 30 mins", images=15, makeup=True, outfits=4, styling=True, mount=True,
        notes="Executive indoor studio maternity package with A3 mount.",
    ),
    Package(
        name="Gold Package", type=PackageType.STUDIO, price=30000, deposit=2000,
        duration="2 hrs 30 mins", images=20, makeup=True, outfits=4, styling=True,
        photobook=True, photobook_size='8x8"',
        notes="Gold indoor studio maternity package with photobook.",
    ),
    Package(
        name="Platinum Package", type=PackageType.STUDIO, price=35000, deposit=2000,
        duration="2 hrs 30 mins", images=25, makeup=True, outfits=4, styling=True,
        mount=True, balloon_backdrop=True,
        notes="Platinum indoor studio maternity package with balloon backdrop and A3 mount.",
    ),
    Package(
        name="VIP Package", type=PackageType.STUDIO, price=45000, deposit=2000,
        duration="3 hrs 30 mins", images=25, makeup=True, outfits=4, styling=True,
        photobook=True, photobook_size='8x8"', balloon_backdrop=True,
        notes="VIP indoor studio maternity package with balloon backdrop and photobook.",
    ),
    Package(
        name="VVIP Package", type=PackageType.STUDIO, price=50000, deposit=2000,
        duration="3 hrs 30 mins", images=30, makeup=True, outfits=5, styling=True,
        photobook=True, photobook_size='8x8"', mount=True, balloon_backdrop=True, wig=True,
        notes="VVIP indoor studio maternity package with balloon backdrop, A3 mount, "
              "photobook, and styled wig.",
    ),
]

_HOURS_RE = re.compile(r"(\d+)\s*hr", re.IGNORECASE)
_MINUTES_RE = re.compile(r"(\d+)\s*min", re.IGNORECASE)


def parse_duration_minutes(duration: Optional[str], default: Optional[int] = None) -> int:
    """Parse free-text durations such as "2 hrs 30 mins".

    Falls back to the configured default (60 minutes) when no hour or
    minute token is found.
    """
    fallback = settings.booking.default_duration_minutes if default is None else default
    if not duration:
        return fallback
    hours = _HOURS_RE.search(duration)
    minutes = _MINUTES_RE.search(duration)
    if not hours and not minutes:
        return fallback
    total = (int(hours.group(1)) * 60 if hours else 0) + (int(minutes.group(1)) if minutes else 0)
    return total or fallback


def package_terms(package: Package) -> list[str]:
    """Lowercase terms that refer to a package: its name plus static aliases."""
    return [package.name.lower(), *PACKAGE_ALIASES.get(package.name, [])]


def _term_pattern(term: str) -> re.Pattern[str]:
    return re.compile(r"(?<![\w-])" + re.escape(term) + r"(?![\w-])", re.IGNORECASE)


def find_mentioned_packages(text: str, packages: list[Package]) -> list[Package]:
    """Return catalog packages named in ``text``, in order of mention.

    Each package is matched on its longest term; a package whose match
    lies inside another package's longer match is dropped.
    """
    spans: list[tuple[int, int, Package]] = []
    for package in packages:
        best: Optional[tuple[int, int]] = None
        for term in package_terms(package):
            for m in _term_pattern(term).finditer(text):
                if best is None or (m.end() - m.start()) > (best[1] - best[0]):
                    best = (m.start(), m.end())
        if best is not None:
            spans.append((best[0], best[1], package))

    kept = [
        (start, end, pkg)
        for start, end, pkg in spans
        if not any(
            o_start <= start and end <= o_end and (o_end - o_start) > (end - start)
            for o_start, o_end, other in spans
            if other is not pkg
        )
    ]
    return [pkg for _, _, pkg in sorted(kept, key=lambda s: s[0])]


def match_package(text: str, packages: list[Package]) -> Optional[Package]:
    """Return the first package mentioned in ``text`` or None."""
    mentioned = find_mentioned_packages(text, packages)
    return mentioned[0] if mentioned else None


def resolve_package_name(value: str, packages: list[Package]) -> Optional[str]:
    """Map a free-text package reference to its canonical catalog name."""
    normalized = value.lower().strip()
    for package in packages:
        if package.name.lower() == normalized:
            return package.name
    matched = match_package(value, packages)
    return matched.name if matched else None


def package_deposit(package: Optional[Package]) -> float:
    if package is None or package.deposit is None:
        return float(settings.booking.default_deposit)
    return package.deposit


def _feature_list(package: Package) -> list[str]:
    features: list[str] = []
    if package.images:
        features.append(f"{package.images} edited images")
    if package.outfits:
        features.append(f"{package.outfits} outfit changes")
    if package.makeup:
        features.append("professional makeup")
    if package.styling:
        features.append("styling")
    if package.photobook:
        size = f" {package.photobook_size}" if package.photobook_size else ""
        features.append(f"photobook{size}")
    if package.mount:
        features.append("A3 mount")
    if package.balloon_backdrop:
        features.append("balloon backdrop")
    if package.wig:
        features.append("styled wig")
    return features


def format_package_summary(package: Package) -> str:
    currency = settings.business.currency
    line = f"📦 *{package.name}* - {format_money(package.price, currency)}"
    if package.description:
        return f"{line}\n{package.description}"
    features = _feature_list(package)
    if features:
        return f"{line}\n" + ", ".join(features[:3])
    return line


def format_package_details(package: Package) -> str:
    currency = settings.business.currency
    lines = [f"📦 *{package.name}* - {format_money(package.price, currency)}"]
    if package.duration:
        lines.append(f"Duration: {package.duration}")
    lines.extend(f"• {feature}" for feature in _feature_list(package))
    lines.append(f"Deposit: {format_money(package_deposit(package), currency)}")
    if package.notes:
        lines.append(package.notes)
    return "\n".join(lines)


def format_deposit_line(package: Package) -> str:
    return f"📦 *{package.name}*: {format_money(package_deposit(package), settings.business.currency)} deposit"


class PackageCatalog:
    """Read-through TTL cache over the store's package table."""

    def __init__(
        self,
        store,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = settings.booking.package_cache_ttl_sec if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cached: Optional[list[Package]] = None
        self._loaded_at = 0.0

    async def get_packages(self) -> list[Package]:
        if self._cached is not None and self._clock() - self._loaded_at < self._ttl:
            return list(self._cached)
        self._cached = await self._store.list_packages()
        self._loaded_at = self._clock()
        logger.debug("Package cache refreshed with %d packages", len(self._cached))
        return list(self._cached)

    async def get_by_name(self, name: str) -> Optional[Package]:
        for package in await self.get_packages():
            if package.name.lower() == name.lower():
                return package
        return None

    def invalidate(self) -> None:
        self._cached = None
