import logging
import threading
from typing import Dict, Iterable, List, Optional

from .store import CatalogStore, LiveCollection

DEFAULT_CATEGORIES = ["Women", "Men", "Unisex", "Bags"]
DEFAULT_STYLES = [
    "Casual",
    "Streetwear",
    "Formal",
    "Vintage",
    "Minimal",
    "Small",
    "Big",
    "Luggage",
]

_SEED_LOCK = threading.Lock()


def safe_quantity(value) -> int:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return 0


def build_sales_counts(orders: Optional[Iterable[Dict]]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for order in orders or []:
        for line in order.get("products") or []:
            if not isinstance(line, dict) or line.get("id") is None:
                continue
            product_id = str(line["id"])
            counts[product_id] = counts.get(product_id, 0) + safe_quantity(line.get("quantity"))
    return counts


def sort_by_name(documents: Optional[Iterable[Dict]]) -> List[Dict]:
    return sorted(
        documents or [],
        key=lambda document: (
            str(document.get("name", "")).casefold(),
            str(document.get("name", "")),
        ),
    )


def missing_default_names(existing: Iterable[Dict], defaults: Iterable[str]) -> List[str]:
    existing_names = {str(document.get("name", "")).lower() for document in existing}
    missing: List[str] = []
    for name in defaults:
        if name.lower() in existing_names:
            continue
        existing_names.add(name.lower())
        missing.append(name)
    return missing


def seed_default_taxonomy(
    store: CatalogStore,
    categories: Iterable[Dict],
    styles: Iterable[Dict],
    default_categories: Iterable[str] = DEFAULT_CATEGORIES,
    default_styles: Iterable[str] = DEFAULT_STYLES,
) -> Dict[str, List[str]]:
    """Insert the default names absent from each collection, ignoring case."""
    seeded = {"categories": [], "styles": []}
    for collection, existing, defaults in (
        ("categories", categories, default_categories),
        ("styles", styles, default_styles),
    ):
        for name in missing_default_names(existing, defaults):
            if store.ensure_named_document(collection, name):
                seeded[collection].append(name)
    return seeded


class DashboardView:
    def __init__(self, db, store: CatalogStore, logger: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.products = LiveCollection(db, "products", logger=self.logger)
        self.categories = LiveCollection(db, "categories", logger=self.logger)
        self.styles = LiveCollection(db, "styles", logger=self.logger)
        self.orders = LiveCollection(db, "orders", sort=[("createdAt", -1)], logger=self.logger)
        self.sales_count: Dict[str, int] = {}
        self.seeded: Dict[str, List[str]] = {"categories": [], "styles": []}
        self.has_seeded = False

        self.orders.subscribe(self._on_orders)

    def _on_orders(self, orders: List[Dict]):
        self.sales_count = build_sales_counts(orders)

    def seed_taxonomy(self) -> bool:
        """Seed defaults once both taxonomy snapshots have loaded."""
        if self.has_seeded or self.categories.is_loading or self.styles.is_loading:
            return False
        self.has_seeded = True

        with _SEED_LOCK:
            seeded = seed_default_taxonomy(self.store, self.categories.data, self.styles.data)
        for collection, names in seeded.items():
            self.seeded[collection].extend(names)
        if not any(seeded.values()):
            return False

        self.logger.info(
            "Seeded default taxonomy: %s categories, %s styles",
            len(seeded["categories"]),
            len(seeded["styles"]),
        )
        return True

    def refresh(self):
        for live_collection in (self.products, self.categories, self.styles, self.orders):
            live_collection.refresh()
        if self.seed_taxonomy():
            # Pick up the seeded names so the form options include them.
            self.categories.refresh()
            self.styles.refresh()
        return self

    @property
    def sorted_categories(self) -> List[Dict]:
        return sort_by_name(self.categories.data)

    @property
    def sorted_styles(self) -> List[Dict]:
        return sort_by_name(self.styles.data)

    def sales_for(self, product_id) -> int:
        return self.sales_count.get(str(product_id), 0)
