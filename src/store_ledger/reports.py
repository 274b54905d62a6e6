"""Sales overview handed to the narrative report generator.

The generator itself lives outside this package; it receives the payload built
here and returns prose. Only the figures are computed locally.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .constants import DEFAULT_LOW_STOCK_THRESHOLD, PaymentLabel
from .data_manager import ProductRow, SaleRecord, quantize_money


@dataclass(frozen=True)
class SalesOverview:
    """Headline figures for the sales log and the shelf."""

    total_revenue: Decimal
    sale_count: int
    average_sale: Decimal
    best_seller: Optional[Tuple[str, int]]
    low_stock: Tuple[ProductRow, ...]

    def as_prompt_payload(self) -> Dict[str, Any]:
        """Plain JSON-friendly dict for the external report generator."""
        return {
            "total_revenue": str(self.total_revenue),
            "sale_count": self.sale_count,
            "average_sale": str(self.average_sale),
            "best_seller": (
                {"name": self.best_seller[0], "quantity": self.best_seller[1]}
                if self.best_seller
                else None
            ),
            "low_stock": [
                {"sku": product.sku, "name": product.name, "stock": product.stock}
                for product in self.low_stock
            ],
        }


def summarize_sales(
    sales: Iterable[SaleRecord],
    products: Iterable[ProductRow],
    *,
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
) -> SalesOverview:
    """Compute revenue, average ticket, best seller and low-stock warnings.

    Revenue nets refunds off. The average is taken over forward sales only.
    Units sold per item name are netted by returned units, and ties for best
    seller go to the name that reached the count first.
    """
    records: List[SaleRecord] = list(sales)
    total_revenue = sum((record.total for record in records), Decimal("0.00"))
    forward = [record for record in records if record.payment_method != PaymentLabel.REFUND.value]
    forward_total = sum((record.total for record in forward), Decimal("0.00"))
    average = quantize_money(forward_total / len(forward)) if forward else Decimal("0.00")

    units: Counter = Counter()
    for record in records:
        sign = -1 if record.payment_method == PaymentLabel.REFUND.value else 1
        for item in record.items:
            units[item.name] += sign * item.quantity

    best = units.most_common(1)
    best_seller = best[0] if best and best[0][1] > 0 else None

    low_stock = tuple(product for product in products if product.stock < low_stock_threshold)
    return SalesOverview(
        total_revenue=total_revenue,
        sale_count=len(forward),
        average_sale=average,
        best_seller=best_seller,
        low_stock=low_stock,
    )
