"""Tests for arbitrage.py: odds math, moneyline arbs and back/lay arbs."""

import math
import unittest

from arbitrage import (
    apply_commission,
    best_offer,
    classify_implied_sum,
    fair_odds_from_prices,
    find_back_lay_arbs,
    find_event_arb,
    implied_probability_sum,
    is_valid_price,
    moneyline_outcomes,
    PricedOutcome,
)
from odds_fixtures import make_event, quote, scenario_a_event


class TestOddsMath(unittest.TestCase):
    def test_implied_probability_sum(self):
        self.assertAlmostEqual(implied_probability_sum([2.0, 2.0]), 1.0, places=9)
        self.assertAlmostEqual(implied_probability_sum([2.10, 2.05]), 0.963995, places=5)

    def test_classify_implied_sum(self):
        self.assertEqual(classify_implied_sum(0.99, 0.02), "arb")
        self.assertEqual(classify_implied_sum(1.0, 0.02), "near-arb")
        self.assertEqual(classify_implied_sum(1.015, 0.02), "near-arb")
        self.assertIsNone(classify_implied_sum(1.02, 0.02))
        self.assertIsNone(classify_implied_sum(1.01, 0.0))

    def test_is_valid_price(self):
        self.assertTrue(is_valid_price(1.01))
        self.assertFalse(is_valid_price(1.0))
        self.assertFalse(is_valid_price(0.5))
        self.assertFalse(is_valid_price(True))
        self.assertFalse(is_valid_price(math.nan))
        self.assertFalse(is_valid_price("2.0"))

    def test_fair_odds_remove_vig(self):
        fair = fair_odds_from_prices([1.9, 1.9])
        self.assertAlmostEqual(fair[0], 2.0, places=9)
        self.assertAlmostEqual(fair[1], 2.0, places=9)

    def test_apply_commission(self):
        self.assertAlmostEqual(apply_commission(3.0, 0.05, True), 2.9, places=9)
        self.assertEqual(apply_commission(3.0, 0.05, False), 3.0)
        self.assertEqual(apply_commission(1.0, 0.05, True), 1.0)

    def test_best_offer_tie_goes_to_smallest_bookmaker_key(self):
        offers = [
            PricedOutcome("Home", "zeta", "Zeta", 2.1, 2.1),
            PricedOutcome("Home", "alpha", "Alpha", 2.1, 2.1),
            PricedOutcome("Home", "beta", "Beta", 2.0, 2.0),
        ]
        self.assertEqual(best_offer(offers).bookmaker_key, "alpha")
        self.assertIsNone(best_offer([]))


class TestMoneylineOutcomes(unittest.TestCase):
    def test_two_way_order_home_then_away(self):
        event = scenario_a_event()
        self.assertEqual(moneyline_outcomes(event), ["Home", "Away"])

    def test_soccer_requires_three_outcomes(self):
        event = make_event(
            quote("book_a", "h2h", ("Home", 2.1), ("Away", 2.05)),
            sport_key="soccer_epl",
        )
        self.assertEqual(moneyline_outcomes(event), [])

    def test_tennis_rejects_three_outcomes(self):
        event = make_event(
            quote("book_a", "h2h", ("Home", 2.1), ("Away", 2.05), ("Draw", 15.0)),
            sport_key="tennis_atp",
        )
        self.assertEqual(moneyline_outcomes(event), [])

    def test_prefers_largest_outcome_set(self):
        event = make_event(
            quote("book_a", "h2h", ("Home", 2.1), ("Away", 2.05)),
            quote("book_b", "h2h", ("Home", 2.3), ("Away", 3.0), ("Draw", 3.4)),
            sport_key="icehockey_nhl",
        )
        self.assertEqual(moneyline_outcomes(event), ["Home", "Away", "Draw"])


class TestFindEventArb(unittest.TestCase):
    def test_two_way_arb_equal_payout_stakes(self):
        arb = find_event_arb(scenario_a_event(), near_arb_threshold=0.02, total_stake=100.0)
        self.assertIsNotNone(arb)
        self.assertEqual(arb.kind, "arb")
        self.assertEqual(arb.market, "h2h")
        home, away = arb.legs
        self.assertEqual((home.outcome, home.bookmaker_key, home.odds), ("Home", "book_a", 2.10))
        self.assertEqual((away.outcome, away.bookmaker_key, away.odds), ("Away", "book_b", 2.05))
        self.assertAlmostEqual(arb.profit_percentage, 3.73, delta=0.01)
        self.assertAlmostEqual(home.stake, 49.40, delta=0.01)
        self.assertAlmostEqual(away.stake, 50.60, delta=0.01)
        self.assertAlmostEqual(home.stake + away.stake, 100.0, places=9)
        self.assertAlmostEqual(arb.guaranteed_return, 103.73, delta=0.01)
        for leg in arb.legs:
            self.assertAlmostEqual(leg.stake * leg.effective_odds, arb.guaranteed_return, places=6)

    def test_near_arb_reports_negative_profit(self):
        event = make_event(
            quote("book_a", "h2h", ("Home", 2.00), ("Away", 1.90)),
            quote("book_b", "h2h", ("Home", 1.95), ("Away", 1.98)),
        )
        arb = find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0)
        self.assertIsNotNone(arb)
        self.assertEqual(arb.kind, "near-arb")
        self.assertLess(arb.profit_percentage, 0)

    def test_no_opportunity_above_threshold(self):
        event = make_event(
            quote("book_a", "h2h", ("Home", 1.90), ("Away", 1.90)),
            quote("book_b", "h2h", ("Home", 1.90), ("Away", 1.90)),
        )
        self.assertIsNone(find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0))

    def test_single_bookmaker_is_never_an_arb(self):
        event = make_event(quote("book_a", "h2h", ("Home", 2.10), ("Away", 2.10)))
        self.assertIsNone(find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0))

    def test_prices_at_or_below_one_are_ignored(self):
        event = make_event(
            quote("book_a", "h2h", ("Home", 1.0), ("Away", 2.05)),
            quote("book_b", "h2h", ("Home", 2.10), ("Away", 1.50)),
        )
        arb = find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0)
        self.assertEqual([leg.bookmaker_key for leg in arb.legs], ["book_b", "book_a"])

    def test_equal_prices_pick_smallest_bookmaker_key(self):
        event = make_event(
            quote("book_b", "h2h", ("Home", 2.10), ("Away", 1.70)),
            quote("book_a", "h2h", ("Home", 2.10), ("Away", 1.70)),
            quote("book_c", "h2h", ("Home", 1.80), ("Away", 2.05)),
        )
        arb = find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0)
        self.assertEqual(arb.legs[0].bookmaker_key, "book_a")

    def test_detection_is_deterministic(self):
        event = scenario_a_event()
        first = find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0)
        second = find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0)
        self.assertEqual(first, second)

    def test_exchange_price_is_commission_adjusted(self):
        event = make_event(
            quote("betfair_ex_eu", "h2h", ("Home", 2.20), ("Away", 1.70)),
            quote("book_b", "h2h", ("Home", 1.90), ("Away", 2.05)),
        )
        arb = find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0, commission_rate=0.05)
        home = arb.legs[0]
        self.assertEqual(home.odds, 2.20)
        self.assertAlmostEqual(home.effective_odds, 2.14, places=9)
        self.assertAlmostEqual(home.stake * home.effective_odds, arb.guaranteed_return, places=6)

    def test_three_way_soccer_arb(self):
        event = make_event(
            quote("book_a", "h2h", ("Home", 3.0), ("Away", 3.2), ("Draw", 3.4)),
            quote("book_b", "h2h", ("Draw", 3.6), ("Home", 3.1), ("Away", 3.0)),
            sport_key="soccer_epl",
        )
        arb = find_event_arb(event, near_arb_threshold=0.02, total_stake=100.0)
        self.assertEqual(arb.kind, "arb")
        self.assertEqual(arb.market, "h2h-3way")
        self.assertEqual([leg.outcome for leg in arb.legs], ["Home", "Away", "Draw"])
        self.assertEqual([leg.odds for leg in arb.legs], [3.1, 3.2, 3.6])


class TestFindBackLayArbs(unittest.TestCase):
    def _event(self, back_price):
        return make_event(
            quote("book_a", "h2h", ("Home", back_price), ("Away", 1.70)),
            quote("betfair_ex_eu", "h2h_lay", ("Home", 2.05)),
        )

    def test_back_above_minimum_is_an_arb(self):
        arbs = find_back_lay_arbs(self._event(2.20), total_stake=100.0, commission_rate=0.05)
        self.assertEqual(len(arbs), 1)
        arb = arbs[0]
        self.assertEqual(arb.kind, "back-lay")
        self.assertEqual((arb.outcome, arb.back_bookmaker_key, arb.exchange_key), ("Home", "book_a", "betfair_ex_eu"))
        self.assertAlmostEqual(arb.back_stake + arb.liability, 100.0, places=6)
        self.assertAlmostEqual(arb.lay_stake, arb.back_stake * 2.20 / (2.05 - 0.05), places=9)
        self.assertAlmostEqual(arb.liability, arb.lay_stake * 1.05, places=9)
        self.assertGreater(arb.guaranteed_profit, 0)
        self.assertGreater(arb.profit_percentage, 0)

    def test_back_below_minimum_is_skipped(self):
        # minimum back odds are (2.05 - 0.05) / 0.95 = 2.105
        self.assertEqual(find_back_lay_arbs(self._event(2.10), total_stake=100.0, commission_rate=0.05), [])

    def test_lay_quotes_from_non_exchanges_are_ignored(self):
        event = make_event(
            quote("book_a", "h2h", ("Home", 2.50), ("Away", 1.70)),
            quote("book_b", "h2h_lay", ("Home", 1.50)),
        )
        self.assertEqual(find_back_lay_arbs(event, total_stake=100.0), [])


if __name__ == "__main__":
    unittest.main()
