#!/usr/bin/env python3
"""
Core type tests

1. Hashlock utilities
2. Timelock predicates and validation
3. Swap parameter validation
4. Role lookups

Usage:
    python test_core.py
"""

import sys
import os
import unittest

# Add package to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from crossescrow.core import (
    SwapRole, EscrowState, SwapParameters, TimelockPolicy,
    EscrowError, InvalidParameters, InvalidTimelocks,
    make_hashlock, verify_secret, is_valid_hashlock, generate_secret, short_secret,
    default_timelocks,
)


def make_params(**overrides) -> SwapParameters:
    values = dict(
        order_id="order-1",
        hashlock=make_hashlock("abc"),
        maker="maker",
        taker="taker",
        amount=1000,
        safety_deposit=10,
        timelocks=TimelockPolicy(3600, 7200, 86400, created_at=0),
    )
    values.update(overrides)
    return SwapParameters(**values)


class TestHashlock(unittest.TestCase):
    """SHA256 hashlock round trip."""

    def test_known_digest(self):
        """make_hashlock('abc') is the SHA256 test vector."""
        self.assertEqual(
            make_hashlock("abc"),
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad",
        )

    def test_verify_round_trip(self):
        for secret in ["abc", "", "ünïcødé", "x" * 500]:
            self.assertTrue(verify_secret(secret, make_hashlock(secret)))

    def test_other_secret_rejected(self):
        hashlock = make_hashlock("abc")
        for other in ["abd", "ABC", "abc ", " abc"]:
            self.assertFalse(verify_secret(other, hashlock))

    def test_uppercase_hashlock_accepted(self):
        self.assertTrue(verify_secret("abc", make_hashlock("abc").upper()))

    def test_malformed_inputs(self):
        self.assertFalse(verify_secret("abc", "deadbeef"))
        self.assertFalse(verify_secret(None, make_hashlock("abc")))
        self.assertFalse(is_valid_hashlock("g" * 64))
        self.assertFalse(is_valid_hashlock(None))

    def test_generate_secret(self):
        secret, hashlock = generate_secret()
        self.assertEqual(len(secret), 32)
        self.assertTrue(verify_secret(secret, hashlock))
        self.assertNotEqual(generate_secret()[0], secret)

    def test_short_secret(self):
        self.assertEqual(short_secret("0123456789abcdef"), "01234567...")
        self.assertEqual(short_secret(None), "-")


class TestTimelockPolicy(unittest.TestCase):
    """Window predicates measured from created_at."""

    def setUp(self):
        self.policy = TimelockPolicy(3600, 7200, 86400, created_at=1000)

    def test_withdraw_window_inclusive(self):
        self.assertTrue(self.policy.can_withdraw(1000))
        self.assertTrue(self.policy.can_withdraw(4600))
        self.assertFalse(self.policy.can_withdraw(4601))

    def test_cancel_threshold_inclusive(self):
        self.assertFalse(self.policy.can_cancel(8199))
        self.assertTrue(self.policy.can_cancel(8200))

    def test_rescue_delay_inclusive(self):
        self.assertFalse(self.policy.can_rescue(87399))
        self.assertTrue(self.policy.can_rescue(87400))

    def test_monotonic(self):
        """Withdraw never reopens; cancel and rescue never close."""
        withdraw = [self.policy.can_withdraw(t) for t in range(0, 100000, 500)]
        cancel = [self.policy.can_cancel(t) for t in range(0, 100000, 500)]
        rescue = [self.policy.can_rescue(t) for t in range(0, 100000, 500)]
        self.assertEqual(withdraw, sorted(withdraw, reverse=True))
        self.assertEqual(cancel, sorted(cancel))
        self.assertEqual(rescue, sorted(rescue))

    def test_construction_is_permissive(self):
        """Inverted windows only fail on validate()."""
        policy = TimelockPolicy(86400, 7200, 3600, created_at=0)
        with self.assertRaises(InvalidTimelocks):
            policy.validate()

    def test_validate_ordering(self):
        self.policy.validate()
        for bad in [(3600, 3600, 86400), (3600, 7200, 7200), (7200, 3600, 86400)]:
            with self.assertRaises(InvalidTimelocks):
                TimelockPolicy(*bad, created_at=0).validate()

    def test_validate_positive_ints(self):
        for bad in [(0, 7200, 86400), (-1, 7200, 86400), (True, 7200, 86400), (1.5, 7200, 86400)]:
            with self.assertRaises(InvalidTimelocks):
                TimelockPolicy(*bad).validate()

    def test_unstamped_policy(self):
        policy = TimelockPolicy(3600, 7200, 86400)
        with self.assertRaises(InvalidTimelocks):
            policy.can_withdraw(0)
        self.assertEqual(policy.stamped(50).created_at, 50)
        self.assertIs(self.policy.stamped(50), self.policy)

    def test_invalid_timelocks_is_invalid_parameters(self):
        self.assertTrue(issubclass(InvalidTimelocks, InvalidParameters))
        self.assertTrue(issubclass(InvalidParameters, EscrowError))
        self.assertEqual(InvalidTimelocks.kind, "InvalidTimelocks")

    def test_defaults_are_valid(self):
        default_timelocks(created_at=0).validate()


class TestSwapParameters(unittest.TestCase):
    """Parameter validation and transport."""

    def test_valid(self):
        make_params().validate()
        make_params(token="usdc", amount=0, safety_deposit=0).validate()

    def test_invalid_fields(self):
        cases = [
            dict(order_id=""),
            dict(hashlock="abc"),
            dict(maker=""),
            dict(amount=-1),
            dict(safety_deposit=-5),
            dict(amount=1.5),
            dict(token=""),
        ]
        for overrides in cases:
            with self.assertRaises(InvalidParameters, msg=str(overrides)):
                make_params(**overrides).validate()

    def test_timelocks_checked(self):
        with self.assertRaises(InvalidTimelocks):
            make_params(timelocks=TimelockPolicy(7200, 3600, 86400)).validate()

    def test_dict_transport(self):
        params = make_params(token="usdc")
        self.assertEqual(SwapParameters.from_dict(params.to_dict()), params)
        self.assertFalse(params.is_native)

    def test_frozen(self):
        params = make_params()
        with self.assertRaises(Exception):
            params.amount = 5

    def test_stamped(self):
        params = make_params(timelocks=TimelockPolicy(3600, 7200, 86400))
        stamped = params.stamped(123)
        self.assertEqual(stamped.timelocks.created_at, 123)
        self.assertIsNone(params.timelocks.created_at)


class TestSwapRole(unittest.TestCase):
    """Role-derived authorities and beneficiaries."""

    def test_source(self):
        params = make_params()
        role = SwapRole.SOURCE
        self.assertEqual(role.tag, "src")
        self.assertTrue(role.open_withdrawal)
        self.assertEqual(role.withdraw_beneficiary(params), "maker")
        self.assertEqual(role.cancel_authority(params), "taker")
        self.assertEqual(role.refund_beneficiary(params), "taker")

    def test_destination(self):
        params = make_params()
        role = SwapRole.DESTINATION
        self.assertEqual(role.tag, "dst")
        self.assertFalse(role.open_withdrawal)
        self.assertEqual(role.withdraw_beneficiary(params), "taker")
        self.assertEqual(role.withdraw_authority(params), "taker")
        self.assertEqual(role.cancel_authority(params), "maker")
        self.assertEqual(role.refund_beneficiary(params), "maker")

    def test_states(self):
        self.assertFalse(EscrowState.ACTIVE.is_terminal)
        for state in (EscrowState.WITHDRAWN, EscrowState.CANCELLED, EscrowState.RESCUED):
            self.assertTrue(state.is_terminal)


if __name__ == "__main__":
    unittest.main(verbosity=2)
