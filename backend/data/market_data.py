"""Market data sources for the financial tools.

The tools never hardcode their data: they read from a ``MarketDataProvider``.
``MockMarketData`` serves static demo tables and is what the service wires in
by default.
"""

from typing import Any, Protocol

# Base quote per symbol, USD
MOCK_PRICES: dict[str, float] = {
    "AAPL": 150.25,
    "MSFT": 280.50,
    "GOOGL": 2650.75,
    "AMZN": 3200.00,
    "TSLA": 850.30,
    "NVDA": 450.80,
    "META": 320.45,
    "NFLX": 380.90,
}

MOCK_INDICES: list[dict[str, Any]] = [
    {"name": "S&P 500", "symbol": "SPX", "value": 4150.48, "change": 15.25, "change_percent": 0.37},
    {"name": "Dow Jones", "symbol": "DJI", "value": 33875.40, "change": -45.85, "change_percent": -0.14},
    {"name": "NASDAQ", "symbol": "IXIC", "value": 12853.98, "change": 25.60, "change_percent": 0.20},
]

MOCK_ANALYSIS: dict[str, dict[str, Any]] = {
    "AAPL": {
        "symbol": "AAPL",
        "company_name": "Apple Inc.",
        "pe_ratio": 28.5,
        "eps": 5.89,
        "dividend_yield": 0.66,
        "market_cap": "2.8T",
        "book_value": 3.85,
        "debt_to_equity": 1.73,
        "roe": 147.4,
        "revenue_growth": 8.1,
        "recommendation": "Buy",
        "target_price": 165.00,
    },
    "MSFT": {
        "symbol": "MSFT",
        "company_name": "Microsoft Corporation",
        "pe_ratio": 32.1,
        "eps": 8.75,
        "dividend_yield": 0.72,
        "market_cap": "2.1T",
        "book_value": 13.55,
        "debt_to_equity": 0.47,
        "roe": 47.1,
        "revenue_growth": 12.0,
        "recommendation": "Buy",
        "target_price": 310.00,
    },
}

# Directed rates: MOCK_RATES[source][target]
MOCK_RATES: dict[str, dict[str, float]] = {
    "USD": {"EUR": 0.85, "GBP": 0.73, "JPY": 110.0, "CAD": 1.25, "AUD": 1.35},
    "EUR": {"USD": 1.18, "GBP": 0.86, "JPY": 129.5, "CAD": 1.47, "AUD": 1.59},
    "GBP": {"USD": 1.37, "EUR": 1.16, "JPY": 150.7, "CAD": 1.71, "AUD": 1.85},
}


class MarketDataProvider(Protocol):
    """Read-only source of quotes, index snapshots, ratios and FX rates."""

    def base_price(self, symbol: str) -> float | None: ...

    def known_symbols(self) -> list[str]: ...

    def market_snapshot(self) -> dict[str, Any]: ...

    def financial_ratios(self, symbol: str) -> dict[str, Any] | None: ...

    def analysis_symbols(self) -> list[str]: ...

    def exchange_rate(self, source: str, target: str) -> float | None: ...

    def known_currencies(self) -> list[str]: ...


class MockMarketData:
    """Static demo tables. Symbols and currency codes are expected upper-case."""

    def __init__(
        self,
        prices: dict[str, float] | None = None,
        indices: list[dict[str, Any]] | None = None,
        analysis: dict[str, dict[str, Any]] | None = None,
        rates: dict[str, dict[str, float]] | None = None,
    ):
        self._prices = dict(MOCK_PRICES if prices is None else prices)
        self._indices = [dict(i) for i in (MOCK_INDICES if indices is None else indices)]
        self._analysis = {k: dict(v) for k, v in (MOCK_ANALYSIS if analysis is None else analysis).items()}
        self._rates = {k: dict(v) for k, v in (MOCK_RATES if rates is None else rates).items()}

    def base_price(self, symbol: str) -> float | None:
        return self._prices.get(symbol)

    def known_symbols(self) -> list[str]:
        return list(self._prices)

    def market_snapshot(self) -> dict[str, Any]:
        return {
            "indices": [dict(i) for i in self._indices],
            "market_status": "Open",
            "trading_session": "Regular Hours",
        }

    def financial_ratios(self, symbol: str) -> dict[str, Any] | None:
        ratios = self._analysis.get(symbol)
        return dict(ratios) if ratios is not None else None

    def analysis_symbols(self) -> list[str]:
        return list(self._analysis)

    def exchange_rate(self, source: str, target: str) -> float | None:
        return self._rates.get(source, {}).get(target)

    def known_currencies(self) -> list[str]:
        currencies = set(self._rates)
        for targets in self._rates.values():
            currencies.update(targets)
        return sorted(currencies)
