"""
Fiscal reporting (Quebec WEB-SRM).
"""

from .websrm_client import (
    FiscalClient,
    WebSrmClient,
    build_fer_payload,
    fer_sequence,
    get_fiscal_client,
)

__all__ = [
    "FiscalClient",
    "WebSrmClient",
    "build_fer_payload",
    "fer_sequence",
    "get_fiscal_client",
]
