"""Static price table for paid providers"""

from typing import Dict, Optional

# Operations billed per request rather than per 1K units
PER_REQUEST_OPERATIONS = {"rerank"}

OPERATIONS = ("embed", "rerank", "completion")


class PriceTable:
    """
    USD prices keyed by provider, then operation.

    ``embed`` and ``completion`` are priced per 1K units (tokens);
    ``rerank`` is priced per request. Unknown provider/operation pairs
    cost nothing, which is how free providers are represented.
    """

    def __init__(self, prices: Dict[str, Dict[str, float]]):
        self.prices = {
            provider.lower(): {op.lower(): float(price) for op, price in ops.items()}
            for provider, ops in prices.items()
        }

    def unit_price(self, provider: str, operation: str) -> Optional[float]:
        return self.prices.get(provider.lower(), {}).get(operation.lower())

    def is_paid(self, provider: str) -> bool:
        return any(price > 0 for price in self.prices.get(provider.lower(), {}).values())

    def calculate_cost(self, provider: str, operation: str, units: int) -> float:
        """
        Cost of one usage event.

        Args:
            provider: Provider name
            operation: "embed", "rerank" or "completion"
            units: Tokens consumed (ignored for per-request operations)

        Returns:
            Cost in USD
        """
        price = self.unit_price(provider, operation)
        if price is None:
            return 0.0
        if operation.lower() in PER_REQUEST_OPERATIONS:
            return price
        return (max(units, 0) / 1000.0) * price
