"""Infer whether a shopper is buying for a business (B2B) or personally (B2C).

Each message is scored against weighted phrase patterns. The mode with the
higher score wins and its share of the total score is the confidence. A
conversation is scored message by message, weighting recent messages more.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from commerce_assistant.schemas.actions import AssistantMode
from commerce_assistant.schemas.context import AssistantMessage, CartItemSnapshot

RECENT_MESSAGES = 5
BULK_CART_QUANTITY = 50
LARGE_QUANTITY = 100

_QUANTITIES = re.compile(
    r"\b(\d+\s*(?:units?|pieces?|boxes?|cases?|pallets?|bulk|wholesale|dozen|gross))\b",
    re.IGNORECASE,
)
_LARGE_NUMBERS = re.compile(r"\b([1-9]\d{2,})\s*(?:items?|products?|units?)?\b", re.IGNORECASE)
_BUSINESS_TERMS = re.compile(
    r"\b(company|business|organization|corporate|enterprise|firm|procurement"
    r"|purchase order|po|quote|rfq|invoice|net \d+|terms|vendor|supplier|reseller"
    r"|distributor|tax exempt|ein|vat|wholesale account)\b",
    re.IGNORECASE,
)
_BULK_PRICING = re.compile(
    r"\b(bulk\s*(?:pricing|discount|order)|volume\s*(?:pricing|discount)"
    r"|tier(?:ed)?\s*pricing|quantity\s*(?:discount|break)|wholesale\s*price)\b",
    re.IGNORECASE,
)
_ACCOUNT_TYPES = re.compile(
    r"\b(business\s*account|corporate\s*account|trade\s*account|wholesale\s*account"
    r"|dealer|reseller|b2b)\b",
    re.IGNORECASE,
)
_LOGISTICS = re.compile(
    r"\b(freight|pallet\s*shipping|ltl|full\s*truck|loading\s*dock|commercial\s*address)\b",
    re.IGNORECASE,
)

_PERSONAL_TERMS = re.compile(r"\b(my|me|i|personal|home|family|gift|present)\b", re.IGNORECASE)
_SMALL_QUANTITIES = re.compile(r"\b(one|a|an|single|couple|few)\b", re.IGNORECASE)
_CONSUMER_SHIPPING = re.compile(
    r"\b(home\s*delivery|residential|apartment|free\s*shipping)\b", re.IGNORECASE
)
_CONSUMER_PAYMENT = re.compile(
    r"\b(credit\s*card|paypal|afterpay|klarna|personal\s*check)\b", re.IGNORECASE
)


@dataclass
class ModeSignals:
    quantity: int = 0
    business_language: int = 0
    account_type: int = 0
    bulk_pricing: int = 0

    def add(self, other: "ModeSignals") -> None:
        self.quantity += other.quantity
        self.business_language += other.business_language
        self.account_type += other.account_type
        self.bulk_pricing += other.bulk_pricing


@dataclass
class ModeDetection:
    """Outcome of scoring. ``mode`` is None when nothing pointed either way."""

    mode: AssistantMode | None = None
    confidence: float = 0.0
    indicators: list[str] = field(default_factory=list)
    signals: ModeSignals = field(default_factory=ModeSignals)


def _decide(b2b: float, b2c: float, strong_b2b: bool) -> tuple[AssistantMode | None, float]:
    if b2b + b2c == 0:
        return None, 0.0
    if b2b > b2c:
        return AssistantMode.B2B, b2b / (b2b + b2c)
    if b2c > b2b:
        return AssistantMode.B2C, b2c / (b2b + b2c)
    # Tie: B2C unless the business signals are strong
    return (AssistantMode.B2B if strong_b2b else AssistantMode.B2C), 0.5


def detect_mode(
    message: str,
    *,
    previous_mode: AssistantMode | None = None,
    cart_items: Sequence[CartItemSnapshot] = (),
) -> ModeDetection:
    """Score one message, optionally nudged by the current mode and cart."""
    signals = ModeSignals()
    indicators: list[str] = []
    b2b = b2c = 0

    if _QUANTITIES.search(message):
        b2b += 2
        signals.quantity += 1
        indicators.append("Large quantity mentioned")
    large = _LARGE_NUMBERS.search(message)
    if large and int(large.group(1)) >= LARGE_QUANTITY:
        b2b += 3
        signals.quantity += 1
        indicators.append(f"Quantity of {large.group(1)} detected")
    if _BUSINESS_TERMS.search(message):
        b2b += 2
        signals.business_language += 1
        indicators.append("Business terminology used")
    if _BULK_PRICING.search(message):
        b2b += 3
        signals.bulk_pricing += 1
        indicators.append("Bulk pricing request")
    if _ACCOUNT_TYPES.search(message):
        b2b += 3
        signals.account_type += 1
        indicators.append("Business account reference")
    if _LOGISTICS.search(message):
        b2b += 2
        indicators.append("Commercial logistics mentioned")

    if _PERSONAL_TERMS.search(message):
        b2c += 2
        indicators.append("Personal context detected")
    if _SMALL_QUANTITIES.search(message):
        b2c += 1
        indicators.append("Small quantity mentioned")
    if _CONSUMER_SHIPPING.search(message):
        b2c += 1
        indicators.append("Residential shipping")
    if _CONSUMER_PAYMENT.search(message):
        b2c += 1
        indicators.append("Consumer payment method")

    if previous_mode == AssistantMode.B2B:
        b2b += 1
        indicators.append("Previous B2B context")
    elif previous_mode == AssistantMode.B2C:
        b2c += 1
        indicators.append("Previous B2C context")

    cart_quantity = sum(item.quantity or 1 for item in cart_items)
    if cart_quantity >= BULK_CART_QUANTITY:
        b2b += 2
        signals.quantity += 1
        indicators.append(f"Cart contains {cart_quantity} items")

    mode, confidence = _decide(
        b2b, b2c, signals.quantity >= 2 or signals.bulk_pricing >= 1
    )
    return ModeDetection(mode, round(confidence, 2), indicators, signals)


def analyze_conversation(
    messages: Iterable[AssistantMessage],
    *,
    previous_mode: AssistantMode | None = None,
    cart_items: Sequence[CartItemSnapshot] = (),
) -> ModeDetection:
    """Score the customer's recent messages, weighting later ones more."""
    recent = list(messages)[-RECENT_MESSAGES:]
    results = [
        detect_mode(m.content, previous_mode=previous_mode, cart_items=cart_items)
        for m in recent
        if m.role == "user"
    ]
    aggregated = ModeDetection()
    if not results:
        return aggregated

    b2b = b2c = total_weight = 0.0
    for index, result in enumerate(results):
        weight = (index + 1) / len(results)
        if result.mode == AssistantMode.B2B:
            b2b += result.confidence * weight
        elif result.mode == AssistantMode.B2C:
            b2c += result.confidence * weight
        total_weight += weight
        aggregated.signals.add(result.signals)
        for indicator in result.indicators:
            if indicator not in aggregated.indicators:
                aggregated.indicators.append(indicator)

    signals = aggregated.signals
    strong_b2b = signals.quantity >= 2 or signals.bulk_pricing >= 1 or signals.account_type >= 1
    b2b, b2c = b2b / total_weight, b2c / total_weight
    if b2b == b2c and b2b > 0:
        aggregated.mode = AssistantMode.B2B if strong_b2b else AssistantMode.B2C
        aggregated.confidence = 0.5
    elif b2b != b2c:
        aggregated.mode = AssistantMode.B2B if b2b > b2c else AssistantMode.B2C
        aggregated.confidence = round(max(b2b, b2c), 2)
    return aggregated
