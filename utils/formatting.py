"""
Formatting utilities.
"""

from typing import Optional


def format_currency(amount: Optional[float], currency: str = "EUR") -> str:
    """
    Format an amount as currency.

    Args:
        amount: The amount in whole units. None renders as "n/a".
        currency: Currency code (default EUR).

    Returns:
        Formatted currency string.
    """
    if amount is None:
        return "n/a"
    symbols = {
        "GBP": "£",
        "USD": "$",
        "EUR": "€",
    }
    symbol = symbols.get(currency, currency + " ")
    return f"{symbol}{int(round(amount)):,}"


def truncate(text: str, max_length: int, marker: str = "...") -> str:
    """Truncate text to max_length characters, ending with marker when cut."""
    if len(text) <= max_length:
        return text
    return text[: max_length - len(marker)] + marker
