from __future__ import annotations

import unittest
from datetime import datetime, timezone

from twittuh.errors import FormatError
from twittuh.timestamps import parse_datetime_attr, parse_timestamp

NOW = datetime(2020, 3, 1, 3, 0, tzinfo=timezone.utc)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestParseTimestamp(unittest.TestCase):
    def test_relative(self) -> None:
        for text, want in [
            ("0s", NOW),
            ("45s", _utc(2020, 3, 1, 2, 59, 15)),
            ("23m", _utc(2020, 3, 1, 2, 37)),
            ("2h", _utc(2020, 3, 1, 1, 0)),
            ("3d", _utc(2020, 2, 27, 3, 0)),
        ]:
            with self.subTest(text=text):
                self.assertEqual(parse_timestamp(text, NOW), want)

    def test_longer_durations_are_earlier(self) -> None:
        self.assertLess(parse_timestamp("2h", NOW), parse_timestamp("1h", NOW))

    def test_month_day_in_current_year(self) -> None:
        self.assertEqual(parse_timestamp("Feb 3", NOW), _utc(2020, 2, 3, 12))
        self.assertEqual(parse_timestamp("Feb 29", NOW), _utc(2020, 2, 29, 12))

    def test_month_day_in_future_means_last_year(self) -> None:
        self.assertEqual(parse_timestamp("Jul 9", NOW), _utc(2019, 7, 9, 12))
        # Later on the same day is still in the future.
        self.assertEqual(parse_timestamp("Mar 1", NOW), _utc(2019, 3, 1, 12))

    def test_day_month_year(self) -> None:
        self.assertEqual(parse_timestamp("25 Jun 19", NOW), _utc(2019, 6, 25, 12))
        self.assertEqual(parse_timestamp("1 Jan 07", NOW), _utc(2007, 1, 1, 12))

    def test_surrounding_space_is_ignored(self) -> None:
        self.assertEqual(parse_timestamp(" 23m\n", NOW), _utc(2020, 3, 1, 2, 37))

    def test_bad_input(self) -> None:
        for text in ["", "yesterday", "5w", "Foo 3", "jul 9", "32 Jan 20", "Feb 30", "25 June 19"]:
            with self.subTest(text=text):
                with self.assertRaises(FormatError):
                    parse_timestamp(text, NOW)

    def test_format_error_is_value_error(self) -> None:
        with self.assertRaises(ValueError):
            parse_timestamp("soon", NOW)


class TestParseDatetimeAttr(unittest.TestCase):
    def test_zulu(self) -> None:
        self.assertEqual(
            parse_datetime_attr("2020-03-01T02:37:00.000Z"), _utc(2020, 3, 1, 2, 37)
        )

    def test_naive_is_utc(self) -> None:
        self.assertEqual(parse_datetime_attr("2020-03-01T02:37:00"), _utc(2020, 3, 1, 2, 37))

    def test_bad(self) -> None:
        with self.assertRaises(FormatError):
            parse_datetime_attr("")


if __name__ == "__main__":
    unittest.main()
