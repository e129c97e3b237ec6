"""
Read-time transfer matching
===========================

Usage:
    pytest tests/test_transfer_matching.py -v
"""

import random
from datetime import datetime, timedelta
from decimal import Decimal

from transfers import TransferMatchCandidate, find_matched_transfer_ids

T0 = datetime(2025, 5, 2, 9, 30)


def candidate(id, account, amount, when):
    return TransferMatchCandidate(id=id, account_id=account, amount=Decimal(amount), timestamp=when)


class TestPairing:
    """Opposite-sign, cross-account, equal-amount pairs."""

    def test_matches_opposite_signs_same_amount_within_four_days(self):
        matches = find_matched_transfer_ids([
            candidate("A", "acct-a", "-125.00", T0),
            candidate("B", "acct-b", "125.00", T0 + timedelta(days=4)),
        ])

        assert matches == {"A", "B"}

    def test_no_match_when_gap_is_five_days(self):
        matches = find_matched_transfer_ids([
            candidate("A", "acct-a", "-125.00", T0),
            candidate("B", "acct-b", "125.00", T0 + timedelta(days=5)),
        ])

        assert matches == set()

    def test_window_boundary_is_inclusive(self):
        exactly = find_matched_transfer_ids([
            candidate(1, "acct-a", "-90", T0),
            candidate(2, "acct-b", "90", T0 + timedelta(days=4)),
        ])
        just_over = find_matched_transfer_ids([
            candidate(1, "acct-a", "-90", T0),
            candidate(2, "acct-b", "90", T0 + timedelta(days=4, seconds=1)),
        ])

        assert exactly == {1, 2}
        assert just_over == set()

    def test_same_account_never_matches(self):
        matches = find_matched_transfer_ids([
            candidate(1, "acct-a", "-50", T0),
            candidate(2, "acct-a", "50", T0),
            candidate(3, "acct-a", "-50", T0 + timedelta(hours=3)),
        ])

        assert matches == set()

    def test_same_sign_never_matches(self):
        matches = find_matched_transfer_ids([
            candidate(1, "acct-a", "90", T0),
            candidate(2, "acct-b", "90", T0 + timedelta(days=1)),
        ])

        assert matches == set()

    def test_zero_amounts_never_match(self):
        matches = find_matched_transfer_ids([
            candidate(1, "acct-a", "0", T0),
            candidate(2, "acct-b", "0", T0),
            candidate(3, "acct-c", "-0.00", T0),
        ])

        assert matches == set()

    def test_different_amounts_do_not_match(self):
        matches = find_matched_transfer_ids([
            candidate(1, "acct-a", "-120", T0),
            candidate(2, "acct-b", "100", T0),
        ])

        assert matches == set()

    def test_amounts_compare_by_value(self):
        matches = find_matched_transfer_ids([
            TransferMatchCandidate(1, "acct-a", Decimal("-125.00"), T0),
            TransferMatchCandidate(2, "acct-b", Decimal("125"), T0),
        ])

        assert matches == {1, 2}

    def test_empty_input(self):
        assert find_matched_transfer_ids([]) == set()

    def test_custom_window(self):
        pair = [
            candidate(1, "acct-a", "-10", T0),
            candidate(2, "acct-b", "10", T0 + timedelta(days=2)),
        ]

        assert find_matched_transfer_ids(pair, window=timedelta(days=1)) == set()
        assert find_matched_transfer_ids(pair, window=timedelta(days=2)) == {1, 2}


class TestMultipleCandidates:
    """Groups with more than two members."""

    def test_no_exclusivity_between_matches(self):
        matches = find_matched_transfer_ids([
            candidate(1, "acct-a", "-90", T0),
            candidate(2, "acct-b", "90", T0 + timedelta(days=1)),
            candidate(3, "acct-c", "90", T0 + timedelta(days=2)),
        ])

        assert matches == {1, 2, 3}

    def test_same_sign_pair_not_rescued_by_disqualified_third(self):
        # 1 and 2 share a sign; 3 is opposite but on 1's account and too far from 2.
        matches = find_matched_transfer_ids([
            candidate(1, "acct-a", "90", T0),
            candidate(2, "acct-b", "90", T0 + timedelta(days=1)),
            candidate(3, "acct-a", "-90", T0 + timedelta(days=6)),
        ])

        assert matches == set()

    def test_far_earlier_candidate_does_not_hide_later_pairs(self):
        matches = find_matched_transfer_ids([
            candidate(1, "acct-a", "-50", T0),
            candidate(2, "acct-b", "50", T0 + timedelta(days=10)),
            candidate(3, "acct-c", "-50", T0 + timedelta(days=11)),
        ])

        assert matches == {2, 3}

    def test_only_pairs_inside_each_amount_group(self):
        matches = find_matched_transfer_ids([
            candidate(1, "acct-a", "-100", T0),
            candidate(2, "acct-b", "100", T0),
            candidate(3, "acct-a", "-40", T0),
            candidate(4, "acct-b", "80", T0),
        ])

        assert matches == {1, 2}

    def test_result_is_independent_of_input_order(self):
        rng = random.Random(7)
        pool = []
        for index in range(60):
            pool.append(candidate(
                index,
                f"acct-{rng.randint(1, 3)}",
                rng.choice(["-25", "25", "-40", "40", "0"]),
                T0 + timedelta(hours=rng.randint(0, 240)),
            ))

        expected = find_matched_transfer_ids(pool)
        assert expected  # the pool is dense enough to contain pairs
        for _ in range(10):
            shuffled = pool[:]
            rng.shuffle(shuffled)
            assert find_matched_transfer_ids(shuffled) == expected

    def test_accepts_a_generator(self):
        matches = find_matched_transfer_ids(
            candidate(i, f"acct-{i}", "-5" if i % 2 else "5", T0) for i in range(4)
        )

        assert matches == {0, 1, 2, 3}
