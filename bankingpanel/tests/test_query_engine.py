#!/usr/bin/env python3
"""
Tests for the account query engine: parser, sort selector and result pipeline.
No Discord dependencies.
"""

import os
import sys
import unittest

# Add the repository root to sys.path to import the package
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from bankingpanel.bankingpanel_core import (
    RESULT_CAP,
    Account,
    format_award_date,
    parse_query,
    run_query,
    sort_accounts,
    truncation_notice,
)


ACCOUNTS = [
    Account("ALICE", 150, 1700000000.0),
    Account("BOB", 50, None),
    Account("CAROL", 100, 1600000000.0),
    Account("DAVE", -20, 1650000000.0),
    Account("alberto", 0, None),
]


def names(accounts):
    return [a.name for a in accounts]


class TestParseQuery(unittest.TestCase):
    """Each search form, in priority order."""

    def matching(self, text, bankers=()):
        predicate = parse_query(text, bankers)
        return names(a for a in ACCOUNTS if predicate(a))

    def test_empty_matches_everything(self):
        for text in ("", "   ", "\t"):
            with self.subTest(text=text):
                self.assertEqual(self.matching(text), names(ACCOUNTS))

    def test_is_banker(self):
        self.assertEqual(self.matching("IS:BANKER", {"BOB", "DAVE", "NOT_AN_ACCOUNT"}), ["BOB", "DAVE"])

    def test_is_banker_is_case_insensitive_and_trimmed(self):
        self.assertEqual(self.matching("  is:banker ", {"CAROL"}), ["CAROL"])

    def test_is_banker_takes_a_snapshot(self):
        bankers = {"ALICE"}
        predicate = parse_query("IS:BANKER", bankers)
        bankers.add("BOB")
        self.assertFalse(predicate(ACCOUNTS[1]))

    def test_balance_less_than(self):
        self.assertEqual(self.matching("balance:<100"), ["BOB", "DAVE", "alberto"])

    def test_balance_greater_than(self):
        self.assertEqual(self.matching("balance>50"), ["ALICE", "CAROL"])
        self.assertEqual(self.matching("BALANCE:>50"), ["ALICE", "CAROL"])

    def test_balance_equals(self):
        self.assertEqual(self.matching("balance:100"), ["CAROL"])
        self.assertEqual(self.matching("balance:0"), ["alberto"])

    def test_less_than_wins_when_both_symbols_present(self):
        self.assertEqual(self.matching("balance:>100<"), ["BOB", "DAVE", "alberto"])

    def test_comparator_anywhere_in_text(self):
        # The symbol need not sit next to the number.
        self.assertEqual(self.matching("< balance:100"), ["BOB", "DAVE", "alberto"])

    def test_first_digit_run_is_the_amount(self):
        self.assertEqual(self.matching("balance:1<2"), ["DAVE", "alberto"])

    def test_substring_fallback(self):
        test_cases = [
            ("al", ["ALICE", "alberto"]),
            ("ALB", ["alberto"]),
            ("o", ["BOB", "CAROL", "alberto"]),
            ("zzz", []),
            ("balance", []),
            ("balance:<", []),
            ("is:banker please", []),
        ]
        for text, expected in test_cases:
            with self.subTest(text=text):
                self.assertEqual(self.matching(text, {"ALICE"}), expected)


class TestSortAccounts(unittest.TestCase):

    def test_balance_descending(self):
        self.assertEqual(names(sort_accounts(list(ACCOUNTS), "bal_d")), ["ALICE", "CAROL", "BOB", "alberto", "DAVE"])

    def test_balance_ascending(self):
        self.assertEqual(names(sort_accounts(list(ACCOUNTS), "bal_a")), ["DAVE", "alberto", "BOB", "CAROL", "ALICE"])

    def test_daily_descending_puts_never_last(self):
        self.assertEqual(names(sort_accounts(list(ACCOUNTS), "daily_d")), ["ALICE", "DAVE", "CAROL", "BOB", "alberto"])

    def test_daily_ascending_puts_never_last(self):
        self.assertEqual(names(sort_accounts(list(ACCOUNTS), "daily_a")), ["CAROL", "DAVE", "ALICE", "BOB", "alberto"])

    def test_zero_timestamp_counts_as_never(self):
        accounts = [Account("ZERO", 1, 0), Account("DATED", 1, 5.0)]
        for mode in ("daily_d", "daily_a"):
            with self.subTest(mode=mode):
                self.assertEqual(names(sort_accounts(list(accounts), mode)), ["DATED", "ZERO"])

    def test_ties_keep_input_order(self):
        accounts = [Account("A", 5), Account("B", 5), Account("C", 1), Account("D", 5)]
        self.assertEqual(names(sort_accounts(list(accounts), "bal_d")), ["A", "B", "D", "C"])
        self.assertEqual(names(sort_accounts(list(accounts), "bal_a")), ["C", "A", "B", "D"])

    def test_unknown_mode_keeps_order(self):
        self.assertEqual(names(sort_accounts(list(ACCOUNTS), "name")), names(ACCOUNTS))

    def test_sorts_in_place(self):
        accounts = list(ACCOUNTS)
        self.assertIs(sort_accounts(accounts, "bal_a"), accounts)


class TestRunQuery(unittest.TestCase):

    def test_stable_tie_on_balance_filter(self):
        records = [
            Account("AAA", 10),
            Account("BBB", 200),
            Account("CCC", 10, None),
        ]
        result = run_query("balance:10", "bal_d", records, set())
        self.assertEqual(names(result.shown), ["AAA", "CCC"])
        self.assertFalse(result.truncated)
        self.assertEqual(result.total_matches, 2)

    def test_cap_truncates(self):
        records = [Account(f"USER{i}", i) for i in range(301)]
        result = run_query("", "bal_a", records, set())
        self.assertEqual(len(result.shown), 300)
        self.assertTrue(result.truncated)
        self.assertEqual(result.total_matches, 301)
        self.assertEqual(result.shown[0].name, "USER0")
        self.assertEqual(truncation_notice(result), "Showing 300/301 matches")

    def test_exactly_cap_is_not_truncated(self):
        records = [Account(f"USER{i}", i) for i in range(RESULT_CAP)]
        result = run_query("", "bal_d", records, set())
        self.assertEqual(len(result.shown), RESULT_CAP)
        self.assertFalse(result.truncated)

    def test_custom_cap(self):
        result = run_query("", "bal_d", ACCOUNTS, set(), cap=2)
        self.assertEqual(names(result.shown), ["ALICE", "CAROL"])
        self.assertTrue(result.truncated)
        self.assertEqual(result.total_matches, 5)

    def test_input_is_not_mutated(self):
        records = list(ACCOUNTS)
        run_query("", "bal_a", records, set())
        self.assertEqual(records, ACCOUNTS)

    def test_banker_query_through_pipeline(self):
        result = run_query("is:banker", "bal_a", ACCOUNTS, {"ALICE", "DAVE"})
        self.assertEqual(names(result.shown), ["DAVE", "ALICE"])


class TestFormatAwardDate(unittest.TestCase):

    def test_never(self):
        self.assertEqual(format_award_date(None), "Never")
        self.assertEqual(format_award_date(0), "Never")

    def test_date_and_time(self):
        formatted = format_award_date(1700000000.0)
        self.assertNotEqual(formatted, "Never")
        self.assertEqual(len(formatted.split(" ")), 2)


if __name__ == "__main__":
    unittest.main()
