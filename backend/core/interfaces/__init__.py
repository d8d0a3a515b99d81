# Interfaces (Abstract Contracts)
from .services import Pacer

__all__ = [
    "Pacer",
]
