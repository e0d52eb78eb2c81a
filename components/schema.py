from dataclasses import dataclass
from typing import Tuple

@dataclass(frozen=True, slots=True)
class Schema:
    """Column names of the price CSV. Extra columns in the file are ignored."""
    price_date: str = "Date"
    price_symbol: str = "Symbol"
    price_open: str = "Open"
    price_close: str = "Close"

    @property
    def required_columns(self) -> Tuple[str, ...]:
        return (self.price_date, self.price_symbol, self.price_open, self.price_close)
