from __future__ import annotations

from decimal import Decimal
import unittest
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sub0_cre import pricing
from sub0_cre.errors import IndexOutOfRange, InvalidParameter, ValidationError

WAD = 10**18


class LmsrCostTests(unittest.TestCase):
    def test_zero_quantity_costs_nothing(self) -> None:
        q = [1000 * WAD, 500 * WAD, 0]
        self.assertEqual(pricing.cost_to_buy(q, 1, 0, 100 * WAD), Decimal(0))

    def test_cost_increases_with_quantity(self) -> None:
        q = [1000, 500]
        previous = Decimal(0)
        for quantity in (1, 5, 10, 50, 200):
            current = pricing.cost_to_buy(q, 0, quantity, 100)
            self.assertGreater(current, previous)
            previous = current

    def test_two_outcome_buy_costs_less_than_quantity(self) -> None:
        cost = pricing.cost_to_buy([1000, 500], 0, 10, 100)
        self.assertGreater(cost, 0)
        self.assertLess(cost, 10)

    def test_two_outcome_buy_in_base_units_rounds_up_to_usdc(self) -> None:
        cost = pricing.cost_to_buy([1000 * WAD, 500 * WAD], 0, 10 * WAD, 100 * WAD)
        usdc = pricing.to_settlement_units(cost, 18, 6)
        self.assertGreater(usdc, 0)
        self.assertLess(usdc, 10 * 10**6)
        self.assertGreaterEqual(Decimal(usdc) * Decimal(10**12), cost)
        self.assertLess(Decimal(usdc - 1) * Decimal(10**12), cost)

    def test_large_supplies_do_not_overflow(self) -> None:
        cost = pricing.cost_to_buy([10**24, 0, 0], 0, WAD, WAD)
        self.assertTrue(cost.is_finite())
        self.assertGreater(cost, 0)
        self.assertLessEqual(cost, WAD)

    def test_cost_matches_closed_form(self) -> None:
        ctx = pricing.PRICING_CONTEXT
        b = Decimal(100)
        expected = ctx.multiply(b, ctx.ln(ctx.add(ctx.exp(Decimal(10)), ctx.exp(Decimal(5)))))
        self.assertLess(abs(pricing.cost([1000, 500], b) - expected), Decimal("1e-40"))

    def test_prices_sum_to_one(self) -> None:
        prices = pricing.outcome_prices([1000, 500, 250], 100)
        self.assertAlmostEqual(float(sum(prices)), 1.0, places=12)
        self.assertGreater(prices[0], prices[1])
        self.assertGreater(prices[1], prices[2])


class LmsrValidationTests(unittest.TestCase):
    def test_non_positive_b_rejected(self) -> None:
        for b in (0, -1, "0"):
            with self.assertRaises(InvalidParameter):
                pricing.cost([1, 2], b)

    def test_empty_supply_vector_rejected(self) -> None:
        with self.assertRaises(InvalidParameter):
            pricing.cost([], 100)

    def test_outcome_index_boundary(self) -> None:
        q = [1000, 500]
        pricing.cost_to_buy(q, 1, 1, 100)
        with self.assertRaises(IndexOutOfRange):
            pricing.cost_to_buy(q, 2, 1, 100)
        with self.assertRaises(IndexOutOfRange):
            pricing.cost_to_buy(q, -1, 1, 100)

    def test_errors_are_validation_errors(self) -> None:
        self.assertTrue(issubclass(IndexOutOfRange, ValidationError))
        self.assertTrue(issubclass(InvalidParameter, ValidationError))

    def test_non_numeric_input_rejected(self) -> None:
        with self.assertRaises(InvalidParameter):
            pricing.cost(["abc", 1], 100)
        with self.assertRaises(InvalidParameter):
            pricing.cost([1, 2], "Infinity")


class SettlementUnitTests(unittest.TestCase):
    def test_smallest_positive_cost_rounds_up_to_one_unit(self) -> None:
        self.assertEqual(pricing.to_settlement_units(1, 18, 6), 1)

    def test_exact_amount_not_rounded(self) -> None:
        self.assertEqual(pricing.to_settlement_units(3 * 10**12, 18, 6), 3)

    def test_fractional_amount_rounds_up(self) -> None:
        self.assertEqual(pricing.to_settlement_units(Decimal("3000000000000.5"), 18, 6), 4)

    def test_zero_stays_zero(self) -> None:
        self.assertEqual(pricing.to_settlement_units(0, 18, 6), 0)


if __name__ == "__main__":
    unittest.main()
