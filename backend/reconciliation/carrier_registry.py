"""
Carrier Registry

Central registry of the carriers the reconciliation engine recognises in
bank transaction descriptions. Each carrier has:
- Display name
- Detection priority (lower = checked first)
- Keywords that identify it in a description

Detection is case-insensitive substring matching. The first carrier whose
keyword appears wins; a description never maps to more than one carrier.
"""

from typing import Dict, Any, List, Optional, Tuple
from dataclasses import dataclass

from database.reconciliation_models import Carrier


# Any of these in a description marks the transaction as a carrier payment
CARRIER_PAYMENT_KEYWORDS: Tuple[str, ...] = (
    "fedex", "ups", "usps", "dhl", "freight", "shipping", "carrier",
)


@dataclass(frozen=True)
class CarrierConfig:
    """
    Detection configuration for a single carrier.
    """
    carrier: Carrier
    display_name: str
    priority: int
    keywords: Tuple[str, ...]

    def matches(self, lowered_description: str) -> bool:
        return any(keyword in lowered_description for keyword in self.keywords)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier": self.carrier.value,
            "display_name": self.display_name,
            "priority": self.priority,
            "keywords": list(self.keywords),
        }


class CarrierRegistry:
    """
    Priority-ordered carrier detection table.
    """

    _default_configs: Tuple[CarrierConfig, ...] = (
        CarrierConfig(
            carrier=Carrier.FEDEX,
            display_name="FedEx",
            priority=1,
            keywords=("fedex", "federal express"),
        ),
        CarrierConfig(
            carrier=Carrier.UPS,
            display_name="UPS",
            priority=2,
            keywords=("ups", "united parcel"),
        ),
        CarrierConfig(
            carrier=Carrier.USPS,
            display_name="USPS",
            priority=3,
            keywords=("usps", "postal service"),
        ),
        CarrierConfig(
            carrier=Carrier.DHL,
            display_name="DHL",
            priority=4,
            keywords=("dhl",),
        ),
    )

    def __init__(self):
        self._configs = sorted(self._default_configs, key=lambda c: c.priority)

    def get_all_configs(self) -> List[CarrierConfig]:
        return list(self._configs)

    def is_carrier_payment(self, description: Optional[str]) -> bool:
        """True if the description mentions any carrier-payment keyword."""
        lowered = (description or "").lower()
        return any(keyword in lowered for keyword in CARRIER_PAYMENT_KEYWORDS)

    def detect_carrier(self, description: Optional[str]) -> Optional[Carrier]:
        """Return the highest-priority carrier named in the description, if any."""
        lowered = (description or "").lower()
        for cfg in self._configs:
            if cfg.matches(lowered):
                return cfg.carrier
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "carrier_payment_keywords": list(CARRIER_PAYMENT_KEYWORDS),
            "carriers": [cfg.to_dict() for cfg in self.get_all_configs()],
        }


# Global registry instance
carrier_registry = CarrierRegistry()
