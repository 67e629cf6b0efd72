"""
Gift Package Module (``warehouse_modules.gift_package``).

Assembly of finished gift packages from raw items.  Consumption and the
stock-up of the produced packages commit together with an immutable
manufacture log, or not at all.
"""

from warehouse_modules.gift_package.models import (
    BillOfMaterialsPart,
    BillOfMaterialsSource,
    ConsumedItem,
    GiftPackageManufactureItem,
    GiftPackageManufactureLog,
)
from warehouse_modules.gift_package.service import GiftPackageService, aggregate_consumption

__all__ = [
    "BillOfMaterialsPart",
    "BillOfMaterialsSource",
    "ConsumedItem",
    "GiftPackageManufactureItem",
    "GiftPackageManufactureLog",
    "GiftPackageService",
    "aggregate_consumption",
]
