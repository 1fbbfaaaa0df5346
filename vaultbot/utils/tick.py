from dataclasses import dataclass

from vaultbot.errors import ValidationError


@dataclass
class Tick:
    symbol: str
    price: float
    epoch: float = 0.0


def parse_tick(raw) -> Tick:
    """Flexible tick parser — handles the API dict, a (symbol, quote, epoch) tuple, or an object."""
    try:
        if isinstance(raw, dict):
            return Tick(
                symbol=str(raw["symbol"]),
                price=float(raw.get("quote", raw.get("price"))),
                epoch=float(raw.get("epoch", 0) or 0),
            )
        elif isinstance(raw, (list, tuple)):
            return Tick(
                symbol=str(raw[0]),
                price=float(raw[1]),
                epoch=float(raw[2]) if len(raw) > 2 else 0.0,
            )
        else:
            return Tick(
                symbol=str(getattr(raw, "symbol")),
                price=float(getattr(raw, "quote", getattr(raw, "price", None))),
                epoch=float(getattr(raw, "epoch", 0) or 0),
            )
    except (KeyError, IndexError, AttributeError, TypeError, ValueError) as e:
        raise ValidationError(f"bad tick payload: {raw!r}") from e
