import unittest
from decimal import Decimal

from kasa.services.discount_service import (
    DISCOUNT_AMOUNT,
    DISCOUNT_PERCENTAGE,
    Discount,
    apply_discount,
)
from kasa.validation import ValidationError


class ApplyDiscountTests(unittest.TestCase):
    def test_no_discount_returns_raw_total(self):
        self.assertEqual(apply_discount(12_345, None), 12_345)

    def test_percentage_rounds_half_up_to_the_cent(self):
        self.assertEqual(apply_discount(1_001, Discount(DISCOUNT_PERCENTAGE, Decimal("50"))), 501)
        self.assertEqual(apply_discount(999, Discount(DISCOUNT_PERCENTAGE, Decimal("12.5"))), 874)

    def test_amount_is_subtracted(self):
        self.assertEqual(apply_discount(5_000, Discount(DISCOUNT_AMOUNT, Decimal("1500"))), 3_500)

    def test_amount_larger_than_total_clamps_to_zero(self):
        self.assertEqual(apply_discount(5_000, Discount(DISCOUNT_AMOUNT, Decimal("7500"))), 0)

    def test_percentage_over_hundred_clamps_to_zero(self):
        self.assertEqual(apply_discount(5_000, Discount(DISCOUNT_PERCENTAGE, Decimal("150"))), 0)

    def test_result_never_exceeds_raw_total(self):
        self.assertEqual(apply_discount(5_000, Discount(DISCOUNT_PERCENTAGE, Decimal("-20"))), 5_000)

    def test_result_always_within_bounds(self):
        discounts = [
            None,
            Discount(DISCOUNT_PERCENTAGE, Decimal("0")),
            Discount(DISCOUNT_PERCENTAGE, Decimal("33.3")),
            Discount(DISCOUNT_PERCENTAGE, Decimal("100")),
            Discount(DISCOUNT_AMOUNT, Decimal("1")),
            Discount(DISCOUNT_AMOUNT, Decimal("99999")),
        ]
        for raw in (0, 1, 99, 1_000, 123_457):
            for discount in discounts:
                result = apply_discount(raw, discount)
                self.assertGreaterEqual(result, 0)
                self.assertLessEqual(result, raw)


class DiscountParsingTests(unittest.TestCase):
    def test_empty_payload_means_no_discount(self):
        self.assertIsNone(Discount.from_dict(None))
        self.assertIsNone(Discount.from_dict({}))

    def test_parses_fractional_percentage(self):
        discount = Discount.from_dict({"type": "percentage", "value": 12.5})
        self.assertEqual(discount.type, DISCOUNT_PERCENTAGE)
        self.assertEqual(discount.value, Decimal("12.5"))

    def test_unknown_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            Discount.from_dict({"type": "bogo", "value": 1})

    def test_negative_value_is_rejected(self):
        with self.assertRaises(ValidationError):
            Discount.from_dict({"type": "amount", "value": -5})

    def test_non_numeric_value_is_rejected(self):
        with self.assertRaises(ValidationError):
            Discount.from_dict({"type": "amount", "value": "ten"})
