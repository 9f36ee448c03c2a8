from decimal import Decimal, InvalidOperation
from enum import Enum

from pydantic import BaseModel, ConfigDict


class ClientConfigEnum(Enum):
    def __str__(self):
        return self.value


class BaseClientModel(BaseModel):
    model_config = ConfigDict(validate_assignment=True, title=None, extra="forbid")


def validate_stellar_amount(value: str) -> str:
    """
    Source ledger amounts travel as strings with at most 7 decimal places.
    """
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"{value} is not a valid amount.")
    if amount <= 0:
        raise ValueError(f"Amount must be positive, got {value}.")
    if amount.as_tuple().exponent < -7:
        raise ValueError(f"Amount {value} has more than 7 decimal places.")
    return value
