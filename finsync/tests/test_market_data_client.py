import unittest
from datetime import date
from decimal import Decimal

from finsync.errors import ApiError, NotFoundError, RateLimitError
from finsync.market_data_client import MarketDataClient, search_crypto_symbols
from finsync.rate_limiter import MinIntervalRateLimiter
from finsync.tests.fakes import FakeOpener

GLOBAL_QUOTE = {
    "Global Quote": {
        "01. symbol": "AAPL",
        "05. price": "200.00",
        "07. latest trading day": "2024-06-14",
        "08. previous close": "190.00",
        "09. change": "10.00",
        "10. change percent": "5.2632%",
    }
}


def forex_payload(rate: str, from_code: str = "USD") -> dict:
    return {
        "Realtime Currency Exchange Rate": {
            "1. From_Currency Code": from_code,
            "5. Exchange Rate": rate,
            "6. Last Refreshed": "2024-06-14 21:00:00",
        }
    }


class FixedRates:
    def __init__(self, rate: Decimal) -> None:
        self.value = rate
        self.calls = []

    def rate(self, from_currency: str, to_currency: str, when: date) -> Decimal:
        self.calls.append((from_currency, to_currency))
        return self.value


class MarketDataClientTests(unittest.TestCase):
    def make_client(self, responses, fx=None) -> MarketDataClient:
        self.opener = FakeOpener(responses)
        return MarketDataClient(
            "demo-key",
            limiter=MinIntervalRateLimiter(0),
            fx=fx,
            opener=self.opener,
        )

    def test_requires_api_key(self) -> None:
        with self.assertRaises(ValueError):
            MarketDataClient("")

    def test_stock_quote_in_usd(self) -> None:
        client = self.make_client([(200, GLOBAL_QUOTE)])

        quote = client.get_stock_quote("aapl")

        self.assertEqual(quote.symbol, "AAPL")
        self.assertEqual(quote.price, Decimal("200.00"))
        self.assertEqual(quote.change_percent, Decimal("5.2632"))
        self.assertEqual(quote.currency, "USD")
        query = self.opener.query(0)
        self.assertEqual(query["function"], "GLOBAL_QUOTE")
        self.assertEqual(query["apikey"], "demo-key")

    def test_stock_quote_converted_with_rate_source(self) -> None:
        rates = FixedRates(Decimal("0.9"))
        client = self.make_client([(200, GLOBAL_QUOTE)], fx=rates)

        quote = client.get_stock_quote("AAPL", "eur")

        self.assertEqual(quote.currency, "EUR")
        self.assertEqual(quote.price, Decimal("180.000"))
        self.assertEqual(quote.previous_close, Decimal("171.000"))
        self.assertEqual(rates.calls, [("USD", "EUR")])

    def test_stock_quote_converted_with_forex_endpoint(self) -> None:
        client = self.make_client([(200, GLOBAL_QUOTE), (200, forex_payload("0.5"))])

        quote = client.get_stock_quote("AAPL", "GBP")

        self.assertEqual(quote.price, Decimal("100.000"))
        self.assertEqual(self.opener.query(1)["function"], "CURRENCY_EXCHANGE_RATE")

    def test_empty_quote_is_not_found(self) -> None:
        client = self.make_client([(200, {"Global Quote": {}})])

        with self.assertRaises(NotFoundError):
            client.get_stock_quote("NOPE")

    def test_note_payload_is_rate_limit(self) -> None:
        client = self.make_client(
            [(200, {"Note": "Thank you for using our API. Our standard API call frequency is 5 calls per minute."})]
        )

        with self.assertRaises(RateLimitError) as ctx:
            client.get_stock_quote("AAPL")

        self.assertTrue(ctx.exception.message.startswith("Rate limit exceeded"))

    def test_information_payload_classification(self) -> None:
        client = self.make_client(
            [
                (200, {"Information": "We have detected your API key and our standard API rate limit is 25 requests per day."}),
                (200, {"Information": "This is a premium endpoint."}),
            ]
        )

        with self.assertRaises(RateLimitError):
            client.get_stock_quote("AAPL")
        with self.assertRaises(ApiError) as ctx:
            client.get_stock_quote("AAPL")
        self.assertNotIsInstance(ctx.exception, RateLimitError)

    def test_error_message_payload_is_api_error(self) -> None:
        client = self.make_client([(200, {"Error Message": "Invalid API call."})])

        with self.assertRaises(ApiError) as ctx:
            client.search_symbols("zzz")

        self.assertEqual(ctx.exception.message, "Invalid API call.")

    def test_error_message_on_quote_is_not_found(self) -> None:
        client = self.make_client([(200, {"Error Message": "Invalid API call."})])

        with self.assertRaises(NotFoundError):
            client.get_stock_quote("ZZZZ")

    def test_crypto_quote(self) -> None:
        client = self.make_client([(200, forex_payload("65000.12", from_code="BTC"))])

        quote = client.get_crypto_quote("btc", "eur")

        self.assertEqual(quote.symbol, "BTC")
        self.assertEqual(quote.price, Decimal("65000.12"))
        self.assertEqual(quote.currency, "EUR")

    def test_search_symbols(self) -> None:
        client = self.make_client(
            [
                (
                    200,
                    {
                        "bestMatches": [
                            {
                                "1. symbol": "VWCE.DEX",
                                "2. name": "Vanguard FTSE All-World",
                                "3. type": "ETF",
                                "4. region": "XETRA",
                                "8. currency": "EUR",
                                "9. matchScore": "0.8000",
                            }
                        ]
                    },
                )
            ]
        )

        matches = client.search_symbols("vwce")

        self.assertEqual(matches[0].symbol, "VWCE.DEX")
        self.assertEqual(matches[0].type, "ETF")
        self.assertEqual(matches[0].match_score, Decimal("0.8"))

    def test_price_history_sorted_by_date(self) -> None:
        client = self.make_client(
            [
                (
                    200,
                    {
                        "Time Series (Daily)": {
                            "2024-06-14": {"1. open": "1", "2. high": "2", "3. low": "1", "4. close": "2", "5. volume": "10"},
                            "2024-06-13": {"1. open": "1", "2. high": "1", "3. low": "1", "4. close": "1", "5. volume": "5"},
                        }
                    },
                )
            ]
        )

        points = client.get_price_history("AAPL")

        self.assertEqual([point.date for point in points], [date(2024, 6, 13), date(2024, 6, 14)])

    def test_offline_crypto_search(self) -> None:
        matches = search_crypto_symbols("eth")

        self.assertEqual(matches[0].symbol, "ETH")
        self.assertEqual(matches[0].match_score, Decimal("1"))


if __name__ == "__main__":
    unittest.main()
