from .amounts import ParseResult, coerce_amount, parse_amount

__all__ = [
    "ParseResult",
    "coerce_amount",
    "parse_amount",
]
