"""
Catalog resolver boundary (``warehouse_modules.catalog``).

Product master data lives outside the engine.  The engine only asks
whether a product code exists; an unknown code is a validation failure
(``UnknownProductError``), an unreachable catalog is an
``ExternalDependencyFailureError``.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from warehouse_kernel.domain.movement_validator import raise_for_result, unknown_product
from warehouse_kernel.exceptions import ExternalDependencyFailureError
from warehouse_kernel.logging_config import get_logger

logger = get_logger("modules.catalog")


class CatalogResolver(Protocol):
    """Resolves product codes against catalog master data."""

    def exists(self, product_code: str) -> bool:
        ...


class InMemoryCatalog:
    """Catalog backed by a fixed set of product codes."""

    def __init__(self, product_codes: Iterable[str] = ()):
        self._codes = set(product_codes)

    def add(self, *product_codes: str) -> None:
        self._codes.update(product_codes)

    def exists(self, product_code: str) -> bool:
        return product_code in self._codes


def require_known_product(catalog: CatalogResolver, product_code: str) -> None:
    """
    Raises:
        UnknownProductError: The catalog does not know ``product_code``.
        ExternalDependencyFailureError: The catalog could not be queried.
    """
    try:
        known = catalog.exists(product_code)
    except Exception as exc:
        logger.warning(
            "catalog_unreachable",
            extra={
                "product_code": product_code,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        raise ExternalDependencyFailureError("catalog", str(exc)) from exc
    if not known:
        raise_for_result(unknown_product(product_code))
