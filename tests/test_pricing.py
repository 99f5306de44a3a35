import unittest
from datetime import datetime, timezone
from decimal import Decimal

import pricing


class ParsePriceTests(unittest.TestCase):
    def test_decimal_strings_become_cents(self):
        self.assertEqual(pricing.parse_price_to_cents("199.00"), 19900)
        self.assertEqual(pricing.parse_price_to_cents("0.5"), 50)
        self.assertEqual(pricing.parse_price_to_cents(" 12 "), 1200)

    def test_numbers_and_decimals(self):
        self.assertEqual(pricing.parse_price_to_cents(350), 35000)
        self.assertEqual(pricing.parse_price_to_cents(19.99), 1999)
        self.assertEqual(pricing.parse_price_to_cents(Decimal("0.10")), 10)
        self.assertEqual(pricing.parse_price_to_cents(0), 0)

    def test_rejects_bad_input(self):
        for bad in (None, True, "", "abc", "-1", -0.01, "1.005", "NaN", "Infinity"):
            with self.subTest(value=bad):
                with self.assertRaises(ValueError):
                    pricing.parse_price_to_cents(bad)


class FormatTests(unittest.TestCase):
    def test_format_price(self):
        self.assertEqual(pricing.format_price(19900, "usd"), "$199.00")
        self.assertEqual(pricing.format_price(123456, "EUR"), "€1,234.56")
        self.assertEqual(pricing.format_price(500, "chf"), "CHF 5.00")
        self.assertEqual(pricing.format_price(None, None), "$0.00")

    def test_cents_to_decimal(self):
        self.assertEqual(pricing.cents_to_decimal(1999), Decimal("19.99"))


class DateTests(unittest.TestCase):
    def test_naive_timestamps_are_utc(self):
        dt = pricing.parse_datetime("2025-06-01T09:00")
        self.assertEqual(dt, datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc))

    def test_trailing_z(self):
        dt = pricing.parse_datetime("2025-06-01T09:00:00Z")
        self.assertEqual(dt.utcoffset().total_seconds(), 0)

    def test_invalid_dates(self):
        for bad in (None, "", "next tuesday"):
            with self.subTest(value=bad):
                with self.assertRaises(ValueError):
                    pricing.parse_datetime(bad)

    def test_as_utc_and_isoformat(self):
        naive = datetime(2025, 6, 1, 9, 0)
        self.assertEqual(pricing.as_utc(naive).tzinfo, timezone.utc)
        self.assertEqual(pricing.isoformat(naive), "2025-06-01T09:00:00+00:00")
        self.assertIsNone(pricing.isoformat(None))
        self.assertEqual(pricing.format_event_date(naive), "Jun 01, 2025 09:00 UTC")


if __name__ == "__main__":
    unittest.main()
