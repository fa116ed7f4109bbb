from __future__ import annotations

from typing import Dict, List

from ricemill.models import InventoryItem, MillState, Rates, StockItem

DEFAULT_INVENTORY_NAMES = ["Powders", "Small Bags", "Big Bags", "Bran Bags"]

DEFAULT_STOCK_RATES: Dict[str, float] = {
    "Bran Stock": 25.0,
    "Dhana Stock": 30.0,
    "Nukalu Stock": 12.0,
    "HMT Rice": 45.0,
    "JSR Rice": 50.0,
    "BPT Rice": 48.0,
}

# Used when a stock line has no rate of its own.
FALLBACK_STOCK_RATE = 45.0

# Quick-add billing items -> attribute on Rates.
BILLING_ITEM_RATE_KEYS: Dict[str, str] = {
    "Milling": "milling",
    "Powder": "powder",
    "Big Bags": "big_bags",
    "Small Bags": "small_bags",
    "Bran Bags": "bran_bags",
    "Unloading": "unloading",
    "Loading": "loading",
    "Nukalu": "nukalu",
}

# Billing item name -> inventory line it consumes. Other names map to themselves.
BILLING_TO_INVENTORY: Dict[str, str] = {
    "Powder": "Powders",
}

HAMALI_ITEMS = ("Loading", "Unloading")


def default_inventory() -> List[InventoryItem]:
    return [InventoryItem(name=n, count=0) for n in DEFAULT_INVENTORY_NAMES]


def default_stock() -> List[StockItem]:
    return [StockItem(name=n, kg25=0, kg50=0) for n in DEFAULT_STOCK_RATES]


def default_state() -> MillState:
    """A fresh mill with the standard inventory lines, stock lines and rates.

    Shared by CLI and web API.
    """

    return MillState(
        inventory=default_inventory(),
        stock=default_stock(),
        rates=Rates(),
        stock_rates=dict(DEFAULT_STOCK_RATES),
    )
