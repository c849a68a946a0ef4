from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

CENT = Decimal("0.01")

Amount = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class SplitConfig:
    creator: Decimal = Decimal("0.89")
    community: Decimal = Decimal("0.10")
    platform: Decimal = Decimal("0.01")

    @classmethod
    def from_settings(cls, settings) -> "SplitConfig":
        return cls(
            creator=settings.creator_split,
            community=settings.community_split,
            platform=settings.platform_split,
        )


@dataclass(frozen=True)
class Split:
    creator: Decimal
    community: Decimal
    platform: Decimal

    @property
    def total(self) -> Decimal:
        return self.creator + self.community + self.platform


def to_money(amount: Amount) -> Decimal:
    # str() keeps floats like 0.1 from dragging their binary expansion along
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_split(amount: Amount, config: SplitConfig = SplitConfig()) -> Split:
    """
    Allocate a gross amount between creator, community pool and platform.

    Creator and community shares are rounded half-up to the cent; the
    platform takes whatever remains so the three shares add up to the
    rounded gross amount exactly.
    """
    gross = to_money(amount)
    if gross < 0:
        raise ValueError("amount must be non-negative")

    creator = (gross * config.creator).quantize(CENT, rounding=ROUND_HALF_UP)
    community = (gross * config.community).quantize(CENT, rounding=ROUND_HALF_UP)
    platform = gross - creator - community
    return Split(creator=creator, community=community, platform=platform)


def format_currency(amount: Amount, currency: str = "USD") -> str:
    value = to_money(amount)
    if currency.upper() == "USD":
        return f"${value:,.2f}"
    return f"{value:,.2f} {currency.upper()}"


def describe_split(amount: Amount, currency: str = "USD", config: SplitConfig = SplitConfig()) -> str:
    split = calculate_split(amount, config)
    return (
        f"Creator {format_currency(split.creator, currency)}"
        f" · Community {format_currency(split.community, currency)}"
        f" · Platform {format_currency(split.platform, currency)}"
    )
