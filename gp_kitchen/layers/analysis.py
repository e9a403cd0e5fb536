"""
Layer 4 – Analysis
GE tax and recipe profitability.

Pricing modes:
  instant  inputs bought at the ask (high), outputs sold at the bid (low)
  patient  inputs bought at the bid (low), outputs sold at the ask (high)
"""

import logging
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)

COINS_ITEM_ID = 995
GE_TAX_PERCENT = 2
GE_TAX_CAP_PER_ITEM = 5_000_000

PRICING_MODES = ("instant", "patient")

# mode → (input price field, output price field)
_MODE_FIELDS = {
    "instant": ("high_price", "low_price"),
    "patient": ("low_price", "high_price"),
}


class AnalysisLayer:
    """Profit computation over enriched recipe lines"""

    # ── GE tax ────────────────────────────────────────────

    @staticmethod
    def ge_tax(price: Optional[int], quantity: Optional[int] = 1, item_id: Optional[int] = None) -> int:
        """2% of the sale, floored, capped at 5M per item; coins are exempt"""
        if item_id == COINS_ITEM_ID:
            return 0
        qty = 1 if quantity is None else int(quantity)
        total = int(price or 0) * qty
        tax = total * GE_TAX_PERCENT // 100
        return min(tax, GE_TAX_CAP_PER_ITEM * qty)

    # ── Profit ────────────────────────────────────────────

    def compute_profit(
        self,
        inputs: Iterable[Dict[str, Any]],
        outputs: Iterable[Dict[str, Any]],
        mode: str = "instant",
    ) -> Dict[str, Any]:
        """
        Cost, revenue, tax, profit and ROI of one recipe

        Lines carry item_id, quantity, high_price and low_price; a missing
        price counts as 0 and a missing quantity as 1.
        """
        if mode not in _MODE_FIELDS:
            raise ValueError(f"Unknown pricing mode: {mode}")
        buy_field, sell_field = _MODE_FIELDS[mode]

        input_cost = 0
        for line in inputs:
            qty = _quantity(line)
            input_cost += int(line.get(buy_field) or 0) * qty

        output_revenue = 0
        total_tax = 0
        for line in outputs:
            qty = _quantity(line)
            price = int(line.get(sell_field) or 0)
            output_revenue += price * qty
            total_tax += self.ge_tax(price, qty, line.get("item_id"))

        profit = output_revenue - total_tax - input_cost
        roi = round(profit / input_cost * 100, 2) if input_cost > 0 else 0

        return {
            "input_cost": input_cost,
            "output_revenue": output_revenue,
            "total_tax": total_tax,
            "output_revenue_after_tax": output_revenue - total_tax,
            "profit": profit,
            "roi_percent": roi,
        }

    def compute_recipe_modes(self, recipe: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Profit of a recipe under every pricing mode"""
        inputs = recipe.get("inputs") or []
        outputs = recipe.get("outputs") or []
        return {mode: self.compute_profit(inputs, outputs, mode) for mode in PRICING_MODES}

    def annotate(self, recipe: Dict[str, Any]) -> Dict[str, Any]:
        """Attach `modes` and the instant figures at top level"""
        modes = self.compute_recipe_modes(recipe)
        recipe.update(modes["instant"])
        recipe["modes"] = modes
        return recipe


def _quantity(line: Dict[str, Any]) -> int:
    qty = line.get("quantity")
    return 1 if qty is None else int(qty)


# ── Module-level singleton ───────────────────────────────
_analysis: Optional[AnalysisLayer] = None


def get_analysis_layer() -> AnalysisLayer:
    global _analysis
    if _analysis is None:
        _analysis = AnalysisLayer()
    return _analysis
