import unittest
from decimal import Decimal

from vdraw.prize_draw import (
    DEFAULT_PRIZE_TABLES,
    PrizeTable,
    PrizeTableRegistry,
    PrizeTier,
    build_prize_message,
    count_matches,
)

JACKPOT = Decimal("1000.00")


class DefaultPrizeTableTests(unittest.TestCase):
    def _amount(self, draw_type: str, matches: int, jackpot: Decimal = JACKPOT) -> str:
        return str(DEFAULT_PRIZE_TABLES.evaluate(draw_type, matches, jackpot).prize_amount)

    def test_daily_tiers(self) -> None:
        expected = {5: "1000.00", 4: "150.00", 3: "50.00", 2: "10.00", 1: "0.00", 0: "0.00"}
        for matches, amount in expected.items():
            with self.subTest(matches=matches):
                self.assertEqual(self._amount("daily", matches), amount)

    def test_weekly_tiers(self) -> None:
        expected = {
            6: "1000.00",
            5: "200.00",
            4: "100.00",
            3: "30.00",
            2: "25.00",
            1: "0.00",
            0: "0.00",
        }
        for matches, amount in expected.items():
            with self.subTest(matches=matches):
                self.assertEqual(self._amount("weekly", matches), amount)

    def test_fixed_tiers_ignore_jackpot(self) -> None:
        self.assertEqual(self._amount("daily", 2, Decimal("5.55")), "10.00")
        self.assertEqual(self._amount("weekly", 2, Decimal("99999.99")), "25.00")

    def test_winner_flag_and_tier_name(self) -> None:
        jackpot = DEFAULT_PRIZE_TABLES.evaluate("daily", 5, JACKPOT)
        self.assertTrue(jackpot.is_winner)
        self.assertEqual(jackpot.tier_name, "Jackpot")
        loser = DEFAULT_PRIZE_TABLES.evaluate("daily", 1, JACKPOT)
        self.assertFalse(loser.is_winner)
        self.assertIsNone(loser.tier_name)
        self.assertEqual(loser.prize_amount, Decimal("0.00"))

    def test_rounding_is_half_up_at_output(self) -> None:
        # 15% of 1000.30 is 150.045
        self.assertEqual(self._amount("daily", 4, Decimal("1000.30")), "150.05")
        # 5% of 1234.57 is 61.7285
        self.assertEqual(self._amount("daily", 3, Decimal("1234.57")), "61.73")
        # 3% of 0.50 is 0.015
        self.assertEqual(self._amount("weekly", 3, Decimal("0.50")), "0.02")

    def test_unknown_draw_type(self) -> None:
        with self.assertRaises(KeyError):
            DEFAULT_PRIZE_TABLES.evaluate("monthly", 3, JACKPOT)


class PrizeTableRegistryTests(unittest.TestCase):
    def _table(self, draw_type: str = "daily") -> PrizeTable:
        return PrizeTable(draw_type, [PrizeTier(5, "Jackpot", jackpot_share=Decimal("1"))])

    def test_duplicate_registration_requires_replace(self) -> None:
        registry = PrizeTableRegistry()
        registry.register(self._table())
        with self.assertRaises(ValueError):
            registry.register(self._table())
        replacement = self._table()
        registry.register(replacement, replace=True)
        self.assertIs(registry.get("daily"), replacement)
        self.assertEqual(list(registry.available_tables()), ["daily"])

    def test_tier_needs_exactly_one_rule(self) -> None:
        with self.assertRaises(ValueError):
            PrizeTier(2, "Broken")
        with self.assertRaises(ValueError):
            PrizeTier(2, "Broken", jackpot_share=Decimal("0.1"), fixed_amount=Decimal("1"))

        tier = PrizeTier(3, "Third Prize", jackpot_share=Decimal("0.05"))
        object.__setattr__(tier, "jackpot_share", None)
        with self.assertRaises(ValueError):
            tier.amount_for(JACKPOT)

    def test_duplicate_tier_rejected(self) -> None:
        with self.assertRaises(ValueError):
            PrizeTable(
                "daily",
                [
                    PrizeTier(2, "A", fixed_amount=Decimal("1")),
                    PrizeTier(2, "B", fixed_amount=Decimal("2")),
                ],
            )

    def test_tiers_listed_best_first(self) -> None:
        tiers = DEFAULT_PRIZE_TABLES.get("weekly").tiers()
        self.assertEqual([t.matched_count for t in tiers], [6, 5, 4, 3, 2])


class MatchingAndMessageTests(unittest.TestCase):
    def test_count_matches_uses_set_intersection(self) -> None:
        self.assertEqual(count_matches([7, 12, 23, 31, 10], [7, 12, 23, 31, 42]), 4)
        self.assertEqual(count_matches([42, 31, 23, 12, 7], [7, 12, 23, 31, 42]), 5)
        self.assertEqual(count_matches([1, 2, 3, 4, 5], [7, 12, 23, 31, 42]), 0)

    def test_prize_message(self) -> None:
        outcome = DEFAULT_PRIZE_TABLES.evaluate("daily", 5, JACKPOT)
        message = build_prize_message("TKT-ABC", outcome)
        self.assertIn("JACKPOT WINNER", message)
        self.assertIn("Ticket: TKT-ABC", message)
        self.assertIn("Prize: $1000.00", message)
        second = build_prize_message("TKT-ABC", DEFAULT_PRIZE_TABLES.evaluate("daily", 4, JACKPOT))
        self.assertIn("Second Prize", second)


if __name__ == "__main__":
    unittest.main()
