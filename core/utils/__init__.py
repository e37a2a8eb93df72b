# Utils module
from .timezone import (
    get_utc_now,
    get_utc_isoformat
)

__all__ = [
    "get_utc_now",
    "get_utc_isoformat"
]
