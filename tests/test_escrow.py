#!/usr/bin/env python3
"""
Escrow state machine tests

Tests a single EscrowContract initialized directly on a ledger:
1. The t=0 withdraw and t=8000 cancel scenarios
2. Exactly one terminal transition
3. Role asymmetry for withdraw
4. Check order and authorization
5. Rescue escape hatch

Usage:
    python test_escrow.py
"""

import sys
import os
import unittest

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from crossescrow.core import (
    SwapRole, EscrowState, PayoutStatus, SwapParameters, TimelockPolicy,
    NotActive, WindowExpired, WindowNotReached, BadSecret, Unauthorized,
    InvalidParameters, InvalidTimelocks, NotInitialized, AlreadyInitialized,
    PayoutNotRetryable, make_hashlock, ONE_NATIVE,
)
from crossescrow.contracts.escrow import EscrowContract
from crossescrow.ledger.host import InMemoryLedger

ESCROW = "escrow.test"
FACTORY = "factory.test"
MAKER = "maker.test"
TAKER = "taker.test"
SECRET = "abc"
AMOUNT = ONE_NATIVE
SAFETY = 1000
RESERVE = 77


def scenario_params(**overrides) -> SwapParameters:
    values = dict(
        order_id="order-1",
        hashlock=make_hashlock(SECRET),
        maker=MAKER,
        taker=TAKER,
        amount=AMOUNT,
        safety_deposit=SAFETY,
        timelocks=TimelockPolicy(withdrawal_window=3600,
                                 cancellation_threshold=7200,
                                 rescue_delay=86400),
    )
    values.update(overrides)
    return SwapParameters(**values)


class EscrowTestCase(unittest.TestCase):

    role = SwapRole.DESTINATION

    def setUp(self):
        self.ledger = InMemoryLedger()
        self.ledger.deploy(ESCROW, EscrowContract())
        self.ledger.mint(ESCROW, AMOUNT + SAFETY + RESERVE)
        self.ledger.call(FACTORY, ESCROW, "initialize", self.role, scenario_params())

    def call(self, caller, method, *args):
        return self.ledger.call(caller, ESCROW, method, *args)

    def view(self, method, *args):
        return self.ledger.view(ESCROW, method, *args)

    def terminal_calls(self):
        return [
            lambda: self.call(TAKER, "withdraw", SECRET),
            lambda: self.call(MAKER, "cancel"),
            lambda: self.call(MAKER, "rescue", MAKER),
            lambda: self.call(TAKER, "cancel"),
            lambda: self.call(TAKER, "rescue", TAKER),
        ]


class TestScenarios(EscrowTestCase):
    """Destination escrow, amount=1 unit, windows 3600/7200/86400, secret 'abc'."""

    def test_withdraw_at_creation(self):
        self.assertTrue(self.view("can_withdraw"))
        self.assertFalse(self.view("can_cancel"))
        self.assertFalse(self.view("can_rescue"))

        payout = self.call(TAKER, "withdraw", SECRET)

        self.assertEqual(self.view("get_state"), EscrowState.WITHDRAWN)
        self.assertEqual(self.view("get_revealed_secret"), SECRET)
        self.assertEqual(payout["status"], "settled")
        self.assertEqual(self.ledger.balance_of(TAKER), AMOUNT + SAFETY)
        self.assertEqual(self.ledger.balance_of(ESCROW), RESERVE)

        with self.assertRaises(NotActive):
            self.call(MAKER, "cancel")

    def test_cancel_after_threshold(self):
        self.ledger.set_time(8000)

        with self.assertRaises(WindowExpired):
            self.call(TAKER, "withdraw", SECRET)

        self.call(MAKER, "cancel")

        self.assertEqual(self.view("get_state"), EscrowState.CANCELLED)
        self.assertIsNone(self.view("get_revealed_secret"))
        self.assertEqual(self.ledger.balance_of(MAKER), AMOUNT + SAFETY)
        self.assertEqual(self.ledger.balance_of(TAKER), 0)


class TestExactlyOnce(EscrowTestCase):
    """Exactly one of withdraw / cancel / rescue succeeds."""

    def assert_all_not_active(self):
        for attempt in self.terminal_calls():
            with self.assertRaises(NotActive):
                attempt()

    def test_after_withdraw(self):
        self.call(TAKER, "withdraw", SECRET)
        self.ledger.set_time(90000)
        self.assert_all_not_active()
        self.assertFalse(self.view("can_cancel"))
        self.assertFalse(self.view("can_rescue"))

    def test_after_cancel(self):
        self.ledger.set_time(7200)
        self.call(MAKER, "cancel")
        self.ledger.set_time(90000)
        self.assert_all_not_active()

    def test_after_rescue(self):
        self.ledger.set_time(86400)
        self.call(MAKER, "rescue", "vault.test")
        self.assert_all_not_active()
        self.assertEqual(self.view("get_state"), EscrowState.RESCUED)

    def test_failed_attempt_leaves_escrow_active(self):
        with self.assertRaises(BadSecret):
            self.call(TAKER, "withdraw", "wrong")
        self.assertEqual(self.view("get_state"), EscrowState.ACTIVE)
        self.assertIsNone(self.view("get_revealed_secret"))
        self.assertEqual(self.ledger.balance_of(ESCROW), AMOUNT + SAFETY + RESERVE)


class TestDestinationRole(EscrowTestCase):
    """Only the taker withdraws; the maker cancels and rescues."""

    def test_withdraw_requires_taker(self):
        for caller in [MAKER, "relayer.test", FACTORY]:
            with self.assertRaises(Unauthorized):
                self.call(caller, "withdraw", SECRET)
        self.assertEqual(self.view("get_state"), EscrowState.ACTIVE)

    def test_cancel_requires_maker(self):
        self.ledger.set_time(7200)
        with self.assertRaises(Unauthorized):
            self.call(TAKER, "cancel")
        self.call(MAKER, "cancel")

    def test_authorities(self):
        self.assertEqual(self.view("get_withdraw_authority"), TAKER)
        self.assertEqual(self.view("get_cancel_authority"), MAKER)
        self.assertEqual(self.view("get_role"), SwapRole.DESTINATION)
        self.assertEqual(self.view("get_factory"), FACTORY)


class TestSourceRole(EscrowTestCase):
    """Anyone may withdraw; funds always go to the maker."""

    role = SwapRole.SOURCE

    def test_any_caller_pays_maker(self):
        self.call("relayer.test", "withdraw", SECRET)

        self.assertEqual(self.view("get_state"), EscrowState.WITHDRAWN)
        self.assertEqual(self.ledger.balance_of(MAKER), AMOUNT + SAFETY)
        self.assertEqual(self.ledger.balance_of("relayer.test"), 0)

    def test_taker_cancels_and_is_refunded(self):
        self.ledger.set_time(7200)
        with self.assertRaises(Unauthorized):
            self.call(MAKER, "cancel")
        self.call(TAKER, "cancel")
        self.assertEqual(self.ledger.balance_of(TAKER), AMOUNT + SAFETY)

    def test_authorities(self):
        self.assertEqual(self.view("get_withdraw_authority"), MAKER)
        self.assertEqual(self.view("get_cancel_authority"), TAKER)


class TestCheckOrder(EscrowTestCase):
    """initialized, state, window, secret, caller."""

    def test_window_before_secret(self):
        self.ledger.set_time(3601)
        with self.assertRaises(WindowExpired):
            self.call(MAKER, "withdraw", "wrong")

    def test_secret_before_caller(self):
        with self.assertRaises(BadSecret):
            self.call(MAKER, "withdraw", "wrong")

    def test_window_before_caller_on_cancel(self):
        with self.assertRaises(WindowNotReached):
            self.call(TAKER, "cancel")

    def test_withdraw_window_boundary(self):
        self.ledger.set_time(3600)
        self.assertTrue(self.view("can_withdraw"))
        self.call(TAKER, "withdraw", SECRET)

    def test_cancel_and_withdraw_windows_never_overlap(self):
        for t in [0, 3600, 3601, 7199, 7200, 86400]:
            self.ledger.set_time(t)
            self.assertFalse(self.view("can_withdraw") and self.view("can_cancel"))


class TestRescue(EscrowTestCase):
    """Escape hatch after the rescue delay."""

    def test_rescue_not_reached(self):
        self.ledger.set_time(86399)
        with self.assertRaises(WindowNotReached):
            self.call(MAKER, "rescue", MAKER)

    def test_rescue_to_any_recipient(self):
        self.ledger.set_time(86400)
        with self.assertRaises(Unauthorized):
            self.call(TAKER, "rescue", TAKER)

        self.call(MAKER, "rescue", "vault.test")

        self.assertEqual(self.ledger.balance_of("vault.test"), AMOUNT + SAFETY)
        self.assertIsNone(self.view("get_revealed_secret"))

    def test_rescue_requires_recipient(self):
        self.ledger.set_time(86400)
        with self.assertRaises(InvalidParameters):
            self.call(MAKER, "rescue", "")
        self.assertEqual(self.view("get_state"), EscrowState.ACTIVE)


class TestInitialization(unittest.TestCase):
    """initialize() runs once with valid parameters."""

    def setUp(self):
        self.ledger = InMemoryLedger()
        self.ledger.set_time(500)
        self.ledger.deploy(ESCROW, EscrowContract())

    def test_stamps_creation_time(self):
        self.ledger.call(FACTORY, ESCROW, "initialize", SwapRole.SOURCE, scenario_params())
        params = self.ledger.view(ESCROW, "get_parameters")
        self.assertEqual(params.timelocks.created_at, 500)

    def test_accepts_dict_parameters(self):
        self.ledger.call(FACTORY, ESCROW, "initialize", "source", scenario_params().to_dict())
        self.assertEqual(self.ledger.view(ESCROW, "get_role"), SwapRole.SOURCE)

    def test_initialize_once(self):
        self.ledger.call(FACTORY, ESCROW, "initialize", SwapRole.SOURCE, scenario_params())
        with self.assertRaises(AlreadyInitialized):
            self.ledger.call("attacker.test", ESCROW, "initialize",
                             SwapRole.DESTINATION, scenario_params(taker="attacker.test"))
        self.assertEqual(self.ledger.view(ESCROW, "get_factory"), FACTORY)

    def test_invalid_timelocks_rejected(self):
        bad = scenario_params(timelocks=TimelockPolicy(7200, 3600, 86400))
        with self.assertRaises(InvalidTimelocks):
            self.ledger.call(FACTORY, ESCROW, "initialize", SwapRole.SOURCE, bad)
        with self.assertRaises(NotInitialized):
            self.ledger.call(TAKER, ESCROW, "withdraw", SECRET)

    def test_views_on_uninitialized(self):
        self.assertFalse(self.ledger.view(ESCROW, "can_withdraw"))
        self.assertEqual(self.ledger.view(ESCROW, "get_state"), EscrowState.ACTIVE)
        with self.assertRaises(NotInitialized):
            self.ledger.view(ESCROW, "get_parameters")


class TestNativePayout(EscrowTestCase):
    """Native payouts settle with the transition."""

    def test_payout_record(self):
        self.call(TAKER, "withdraw", SECRET)
        payout = self.view("get_payout")
        self.assertEqual(payout.recipient, TAKER)
        self.assertEqual(payout.status, PayoutStatus.SETTLED)
        self.assertEqual(payout.attempt, 1)

    def test_settled_payout_not_retryable(self):
        with self.assertRaises(PayoutNotRetryable):
            self.call(TAKER, "retry_payout")
        self.call(TAKER, "withdraw", SECRET)
        with self.assertRaises(PayoutNotRetryable):
            self.call(TAKER, "retry_payout")

    def test_payout_callback_is_private(self):
        with self.assertRaises(Unauthorized):
            self.call(TAKER, "on_payout_resolved", 1)

    def test_summary(self):
        summary = self.view("get_summary")
        self.assertEqual(summary["escrow_id"], ESCROW)
        self.assertEqual(summary["state"], "active")
        self.assertEqual(summary["role"], "destination")
        self.assertTrue(summary["can_withdraw"])
        self.assertIsNone(summary["payout"])
        self.assertEqual(summary["balance"], AMOUNT + SAFETY + RESERVE)


if __name__ == "__main__":
    unittest.main(verbosity=2)
