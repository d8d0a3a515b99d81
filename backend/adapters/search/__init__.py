# Search Adapters
# Google Search Console integration

from .gsc_adapter import (
    GSCAdapter,
    QueryResult,
    TokenGrant,
    classify_http_error,
    create_gsc_adapter,
    normalize_row,
)

__all__ = [
    "GSCAdapter",
    "QueryResult",
    "TokenGrant",
    "classify_http_error",
    "create_gsc_adapter",
    "normalize_row",
]
