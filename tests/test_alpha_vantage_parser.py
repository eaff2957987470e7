import datetime as dt
import unittest
from decimal import Decimal

from quotefetch.errors import (
    InvalidSymbolError,
    ProviderError,
    QuotaExceededError,
    QuoteParseError,
    QuoteSchemaError,
)
from quotefetch.integrations.alpha_vantage_parser import (
    parse_global_quote,
    parse_time_series,
    validate_symbol,
)

GLOBAL_QUOTE_PAYLOAD = {
    "Global Quote": {
        "01. symbol": "IBM",
        "02. open": "183.5000",
        "03. high": "185.2500",
        "04. low": "182.1000",
        "05. price": "184.9000",
        "06. volume": "3456789",
        "07. latest trading day": "2024-03-15",
        "08. previous close": "183.0100",
    }
}

NOTE_PAYLOAD = {
    "Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per minute. "
    "Please visit https://www.alphavantage.co/premium/ if you would like to target a higher API call frequency."
}


def _series_payload(symbol="IBM", days=("2024-03-15", "2024-03-14", "2024-03-13")):
    series = {}
    for i, day in enumerate(days):
        series[day] = {
            "1. open": f"{100 + i}.00",
            "2. high": f"{101 + i}.00",
            "3. low": f"{99 + i}.00",
            "4. close": f"{100 + i}.50",
            "5. volume": str(1000 * (i + 1)),
        }
    return {
        "Meta Data": {"1. Information": "Daily Prices", "2. Symbol": symbol},
        "Time Series (Daily)": series,
    }


class TestGlobalQuoteParser(unittest.TestCase):
    def test_parses_all_fields_as_decimals(self):
        quote = parse_global_quote(GLOBAL_QUOTE_PAYLOAD)

        self.assertEqual(quote.symbol, "IBM")
        self.assertEqual(quote.open, Decimal("183.5"))
        self.assertEqual(quote.high, Decimal("185.25"))
        self.assertEqual(quote.low, Decimal("182.1"))
        self.assertEqual(quote.close, Decimal("183.01"))
        self.assertEqual(quote.volume, Decimal("3456789"))
        self.assertEqual(quote.date, dt.date(2024, 3, 15))
        self.assertIsInstance(quote.close, Decimal)
        self.assertTrue(quote.is_valid)

    def test_partial_response_leaves_missing_fields_empty(self):
        quote = parse_global_quote({"Global Quote": {"01. symbol": "MSFT", "02. open": "410.1"}})

        self.assertEqual(quote.symbol, "MSFT")
        self.assertEqual(quote.open, Decimal("410.1"))
        self.assertIsNone(quote.close)
        self.assertIsNone(quote.volume)
        self.assertIsNone(quote.date)

    def test_empty_container_yields_invalid_quote(self):
        quote = parse_global_quote({"Global Quote": {}})

        self.assertIsNone(quote.symbol)
        self.assertFalse(quote.is_valid)

    def test_note_is_reported_as_quota_error(self):
        with self.assertRaises(QuotaExceededError) as ctx:
            parse_global_quote(NOTE_PAYLOAD)
        self.assertIn("5 calls per minute", str(ctx.exception))

    def test_information_message_is_reported_as_quota_error(self):
        with self.assertRaises(QuotaExceededError):
            parse_global_quote({"Information": "API rate limit reached"})

    def test_note_wins_over_data(self):
        payload = dict(GLOBAL_QUOTE_PAYLOAD)
        payload["Note"] = "slow down"
        with self.assertRaises(QuotaExceededError):
            parse_global_quote(payload)

    def test_error_message_is_provider_error(self):
        with self.assertRaises(ProviderError):
            parse_global_quote({"Error Message": "Invalid API call."})

    def test_missing_container_is_schema_error(self):
        with self.assertRaises(QuoteSchemaError):
            parse_global_quote({"Something Else": {}})

    def test_non_object_body_is_parse_error(self):
        with self.assertRaises(QuoteParseError):
            parse_global_quote(["not", "an", "object"])

    def test_bad_numeric_value_is_parse_error(self):
        with self.assertRaises(QuoteParseError):
            parse_global_quote({"Global Quote": {"01. symbol": "IBM", "02. open": "n/a"}})


class TestTimeSeriesParser(unittest.TestCase):
    def test_history_is_reordered_oldest_first(self):
        history = parse_time_series(_series_payload())

        self.assertEqual(history.symbol, "IBM")
        self.assertEqual(
            [q.date for q in history.history],
            [dt.date(2024, 3, 13), dt.date(2024, 3, 14), dt.date(2024, 3, 15)],
        )
        newest = history.history[-1]
        self.assertEqual(newest.open, Decimal("100.00"))
        self.assertEqual(newest.close, Decimal("100.50"))
        self.assertEqual(newest.volume, Decimal("1000"))
        self.assertEqual(newest.symbol, "IBM")

    def test_rows_with_unparseable_dates_are_skipped(self):
        history = parse_time_series(_series_payload(days=("2024-03-15", "garbage", "2024-03-13")))

        self.assertEqual([q.date for q in history.history], [dt.date(2024, 3, 13), dt.date(2024, 3, 15)])

    def test_missing_meta_data_is_schema_error(self):
        payload = _series_payload()
        del payload["Meta Data"]
        with self.assertRaises(QuoteSchemaError):
            parse_time_series(payload)

    def test_missing_series_is_schema_error(self):
        payload = _series_payload()
        del payload["Time Series (Daily)"]
        with self.assertRaises(QuoteSchemaError):
            parse_time_series(payload)

    def test_note_never_yields_history(self):
        with self.assertRaises(QuotaExceededError):
            parse_time_series(NOTE_PAYLOAD)

    def test_symbol_match_is_case_insensitive(self):
        history = parse_time_series(_series_payload(symbol="ibm"))

        self.assertTrue(history.matches("IBM"))
        self.assertFalse(history.matches("MSFT"))


class TestSymbolValidation(unittest.TestCase):
    def test_plain_symbols_pass(self):
        for symbol in ("AAPL", "BRK.B", "RY.TO", "005930"):
            self.assertEqual(validate_symbol(symbol), symbol)

    def test_illegal_characters_are_rejected(self):
        for symbol in ("BAD/SYM", "X:Y", "A B", "A+B", "A=B", "A&B", "A\tB", "A\nB", "A\rB"):
            with self.assertRaises(InvalidSymbolError, msg=symbol):
                validate_symbol(symbol)

    def test_empty_symbol_is_rejected(self):
        with self.assertRaises(InvalidSymbolError):
            validate_symbol("")
        with self.assertRaises(InvalidSymbolError):
            validate_symbol(None)


if __name__ == "__main__":
    unittest.main()
