"""Financial tools the model can call.

Five functions over an injected MarketDataProvider. Each returns a plain dict
(serialized to JSON by the orchestrator before it goes back to the model) or,
for compound interest input validation, a human-readable message string.
Lookup misses raise SymbolNotFoundError / RateUnavailableError; the registry
wraps them so the model sees the message text rather than a crash.

get_stock_price is the only nondeterministic tool: its daily change is drawn
from a fresh ``random.Random`` per call, created by an injectable factory so
tests can seed it.
"""

import random
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable

import structlog

from backend.agent.registry import ToolDescriptor, ToolParameter, ToolRegistry
from backend.data.market_data import MarketDataProvider

logger = structlog.get_logger(__name__)

MAX_DAILY_CHANGE = 5.0
DEFAULT_COMPOUND_FREQUENCY = 12

RngFactory = Callable[[], random.Random]


class SymbolNotFoundError(Exception):
    """Symbol absent from the data source."""

    def __init__(self, symbol: str, known_symbols: list[str], what: str = "Stock symbol"):
        super().__init__(
            f"{what} '{symbol}' not found. Available symbols: {', '.join(known_symbols)}"
        )
        self.symbol = symbol
        self.known_symbols = list(known_symbols)


class RateUnavailableError(Exception):
    """No directed exchange rate for the requested currency pair."""

    def __init__(self, source: str, target: str, known_currencies: list[str]):
        super().__init__(
            f"Exchange rate not available for {source} to {target}. "
            f"Available currencies: {', '.join(known_currencies)}"
        )
        self.source = source
        self.target = target
        self.known_currencies = list(known_currencies)


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def get_stock_price(
    symbol: str,
    *,
    provider: MarketDataProvider,
    rng_factory: RngFactory = random.Random,
) -> dict[str, Any]:
    """Quote for a symbol with a simulated daily change.

    Args:
        symbol: Ticker, any case.
        provider: Market data source.
        rng_factory: Returns a new Random for this call only.

    Returns:
        Dict with symbol, price, change, change_percent, currency, last_updated.

    Raises:
        SymbolNotFoundError: If the provider has no base price for the symbol.
    """
    upper = symbol.strip().upper()
    price = provider.base_price(upper)
    if price is None:
        raise SymbolNotFoundError(symbol, provider.known_symbols())

    rng = rng_factory()
    change = round(rng.uniform(-MAX_DAILY_CHANGE, MAX_DAILY_CHANGE), 2)
    change_percent = round(change / price * 100, 2)

    return {
        "symbol": upper,
        "price": price,
        "change": change,
        "change_percent": change_percent,
        "currency": "USD",
        "last_updated": _timestamp(),
    }


def get_market_summary(*, provider: MarketDataProvider) -> dict[str, Any]:
    """Snapshot of the major indices and the market status."""
    snapshot = provider.market_snapshot()
    return {"last_updated": _timestamp(), **snapshot}


def calculate_compound_interest(
    principal: float,
    rate: float,
    years: int,
    compound_frequency: int = DEFAULT_COMPOUND_FREQUENCY,
) -> dict[str, Any] | str:
    """Future value of an investment with periodic compounding.

    Invalid inputs return a message instead of raising; the model reads the
    text and can explain the problem to the user.
    """
    if principal <= 0 or rate < 0 or years <= 0 or compound_frequency <= 0:
        return "Invalid input: All values must be positive, and rate cannot be negative."

    amount = principal * (1 + rate / compound_frequency) ** (compound_frequency * years)
    interest = amount - principal
    effective = ((amount / principal) - 1) * 100 / years

    return {
        "initial_investment": round(principal, 2),
        "annual_interest_rate": f"{round(rate * 100, 2)}%",
        "years": years,
        "compounding_frequency": compound_frequency,
        "final_amount": round(amount, 2),
        "total_interest": round(interest, 2),
        "effective_annual_return": f"{round(effective, 2)}%",
    }


def get_financial_analysis(symbol: str, *, provider: MarketDataProvider) -> dict[str, Any]:
    """Static valuation ratios and analyst view for a symbol.

    Raises:
        SymbolNotFoundError: If no ratios exist for the symbol.
    """
    upper = symbol.strip().upper()
    ratios = provider.financial_ratios(upper)
    if ratios is None:
        raise SymbolNotFoundError(symbol, provider.analysis_symbols(), what="Financial analysis for")
    return ratios


def convert_currency(
    amount: float,
    from_currency: str,
    to_currency: str,
    *,
    provider: MarketDataProvider,
) -> dict[str, Any]:
    """Convert an amount using the provider's directed rate table.

    Raises:
        RateUnavailableError: If the pair has no rate.
    """
    source = from_currency.strip().upper()
    target = to_currency.strip().upper()

    if source == target:
        return {
            "amount": amount,
            "from_currency": source,
            "to_currency": target,
            "converted_amount": amount,
            "exchange_rate": 1.0,
            "message": "Same currency conversion",
        }

    rate = provider.exchange_rate(source, target)
    if rate is None:
        raise RateUnavailableError(from_currency, to_currency, provider.known_currencies())

    return {
        "amount": amount,
        "from_currency": source,
        "to_currency": target,
        "converted_amount": round(amount * rate, 2),
        "exchange_rate": rate,
        "last_updated": _timestamp(),
    }


STOCK_PRICE = ToolDescriptor(
    name="get_stock_price",
    description="Get the current stock price for a given stock symbol",
    parameters=(
        ToolParameter("symbol", "string", "The stock symbol to look up (e.g., AAPL, MSFT, GOOGL)"),
    ),
)

MARKET_SUMMARY = ToolDescriptor(
    name="get_market_summary",
    description="Get current market summary including major stock indices",
)

COMPOUND_INTEREST = ToolDescriptor(
    name="calculate_compound_interest",
    description="Calculate compound interest for investment planning",
    parameters=(
        ToolParameter("principal", "number", "Initial investment amount in dollars"),
        ToolParameter("rate", "number", "Annual interest rate as decimal (e.g., 0.07 for 7%)"),
        ToolParameter("years", "integer", "Number of years for the investment"),
        ToolParameter(
            "compound_frequency", "integer",
            "Compounding frequency per year (default: 12 for monthly)",
            required=False, default=DEFAULT_COMPOUND_FREQUENCY,
        ),
    ),
)

FINANCIAL_ANALYSIS = ToolDescriptor(
    name="get_financial_analysis",
    description="Get financial ratios and basic analysis for a stock symbol",
    parameters=(
        ToolParameter("symbol", "string", "Stock symbol to analyze (e.g., AAPL, MSFT)"),
    ),
)

CURRENCY_CONVERSION = ToolDescriptor(
    name="convert_currency",
    description="Convert currency amounts between different currencies",
    parameters=(
        ToolParameter("amount", "number", "Amount to convert"),
        ToolParameter("from_currency", "string", "Source currency code (e.g., USD, EUR, GBP)"),
        ToolParameter("to_currency", "string", "Target currency code (e.g., USD, EUR, GBP)"),
    ),
)


def register_financial_tools(
    registry: ToolRegistry,
    provider: MarketDataProvider,
    rng_factory: RngFactory = random.Random,
) -> ToolRegistry:
    """Register all five financial tools, bound to ``provider``.

    Returns:
        The same registry, for chaining.
    """
    registry.register(STOCK_PRICE, partial(get_stock_price, provider=provider, rng_factory=rng_factory))
    registry.register(MARKET_SUMMARY, partial(get_market_summary, provider=provider))
    registry.register(COMPOUND_INTEREST, calculate_compound_interest)
    registry.register(FINANCIAL_ANALYSIS, partial(get_financial_analysis, provider=provider))
    registry.register(CURRENCY_CONVERSION, partial(convert_currency, provider=provider))

    logger.info("tools.registered", tools=registry.names())
    return registry
