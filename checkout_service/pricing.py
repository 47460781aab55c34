"""
pricing.py — Pricing Catalog

Static price list of the storefront: service → tier → base price and
add-on → price. Pricing is a pure function of its inputs; nothing is stored.

Unknown add-on identifiers contribute nothing to the total and are dropped
silently. Callers that need strict add-on validation must filter beforehand.
"""

from decimal import Decimal
from typing import Iterable, Mapping

from .errors import UnknownService, UnknownTier
from .models import CURRENCY, Quote

BRAND_NAME = "ShortFormFactory"

SERVICE_PRICING = {
    "aiReel": {"basic": 35, "standard": 55, "premium": 85},
    "socialEdit": {"basic": 25, "standard": 45, "premium": 70},
    "viralCaptions": {"basic": 15, "standard": 30, "premium": 50},
    "podcastRepurpose": {"basic": 40, "standard": 65, "premium": 95},
    "autoCaptions": {"basic": 10, "standard": 20, "premium": 35},
    "smartCut": {"basic": 20, "standard": 35, "premium": 55},
    "backgroundRemoval": {"basic": 25, "standard": 40, "premium": 60},
    "audioSync": {"basic": 20, "standard": 35, "premium": 55},
}

ADDON_PRICING = {
    "rush": 25,
    "extraClip": 15,
    "extraMinute": 10,
    "premiumCaptions": 15,
    "colorGrade": 20,
    "advancedEffects": 25,
    "thumbnails": 20,
    "musicLicense": 10,
    "sourceFiles": 15,
}


class PricingCatalog:
    """
    Price list for services, tiers and add-ons.

    Args:
        services (Mapping[str, Mapping[str, number]]): Base price per service and tier.
        addons (Mapping[str, number]): Price per add-on.
    """

    def __init__(self, services: Mapping[str, Mapping[str, object]], addons: Mapping[str, object]):
        self.services = {
            name: {tier: Decimal(str(amount)) for tier, amount in tiers.items()}
            for name, tiers in services.items()
        }
        self.addons = {name: Decimal(str(amount)) for name, amount in addons.items()}

    def base_price(self, service: str, tier: str) -> Decimal:
        tiers = self.services.get(service)
        if tiers is None:
            raise UnknownService(service)
        if tier not in tiers:
            raise UnknownTier(service, tier)
        return tiers[tier]

    def price(self, service: str, tier: str, addons: Iterable[str] = ()) -> Quote:
        """
        Computes the quote for a service, tier and add-on selection.

        Raises:
            UnknownService: If the service is not in the catalog.
            UnknownTier: If the tier is not defined for the service.
        """
        total = self.base_price(service, tier)
        for addon in addons:
            total += self.addons.get(addon, Decimal("0"))
        return Quote(total_amount=total, currency=CURRENCY)

    def describe(self, service: str, tier: str) -> str:
        """Human-readable line item description shown on the processor's checkout page."""
        return f"{BRAND_NAME} - {service} ({tier})"


catalog = PricingCatalog(SERVICE_PRICING, ADDON_PRICING)


def price(service: str, tier: str, addons: Iterable[str] = ()) -> Quote:
    return catalog.price(service, tier, addons)
