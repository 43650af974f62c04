"""Cart totals.

Prices are integer cents, so the subtotal is exact. Tax is carried unrounded
and rounded half-up to whole cents only when totals are displayed or persisted,
which keeps ``compute_totals`` additive over disjoint sets of line items.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import PriceUnavailableError
from storefront.db.models import Product, ProductVariant


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def default_tax_rate() -> Decimal:
    return Decimal(settings.TAX_RATE)


@dataclass(frozen=True)
class ResolvedPrice:
    unit_price_cents: int
    title: str


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    variant_id: Optional[int]
    quantity: int
    unit_price_cents: int
    title: str

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class Totals:
    item_count: int = 0
    subtotal_cents: int = 0
    tax_exact_cents: Decimal = Decimal(0)

    def __add__(self, other: "Totals") -> "Totals":
        return Totals(
            self.item_count + other.item_count,
            self.subtotal_cents + other.subtotal_cents,
            self.tax_exact_cents + other.tax_exact_cents,
        )

    @property
    def tax_cents(self) -> int:
        return round_half_up(self.tax_exact_cents)

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents

    def as_dict(self, currency: str = "USD") -> dict:
        return {
            "item_count": self.item_count,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "currency": currency,
        }


class CatalogPriceLookup:
    """Resolves effective unit prices from the catalogue tables.

    A variant's own price wins over its product's price; a variant without a
    price sells at the product price. Inactive or missing rows, and variants
    attached to a different product, are unavailable.
    """

    def __init__(self, db: Session):
        self.db = db
        self._cache: Dict[Tuple[int, Optional[int]], ResolvedPrice] = {}

    def resolve(self, product_id: int, variant_id: Optional[int] = None) -> ResolvedPrice:
        pair = (product_id, variant_id)
        if pair in self._cache:
            return self._cache[pair]
        product = self.db.get(Product, product_id)
        if not product or not product.active:
            raise PriceUnavailableError(product_id)
        if variant_id is None:
            resolved = ResolvedPrice(product.price_cents, product.title)
        else:
            variant = self.db.get(ProductVariant, variant_id)
            if not variant or variant.product_id != product_id or not variant.active:
                raise PriceUnavailableError(product_id, variant_id)
            price = variant.price_cents if variant.price_cents is not None else product.price_cents
            resolved = ResolvedPrice(price, f"{product.title} ({variant.name})")
        self._cache[pair] = resolved
        return resolved


def price_lines(line_items: Iterable, price_lookup) -> List[PricedLine]:
    """Attach the effective unit price to every line; any unresolvable line aborts."""
    priced = []
    for it in line_items:
        resolved = price_lookup.resolve(it.product_id, it.variant_id)
        priced.append(PricedLine(it.product_id, it.variant_id, it.quantity, resolved.unit_price_cents, resolved.title))
    return priced


def totals_for(priced: Iterable[PricedLine], tax_rate: Optional[Decimal] = None) -> Totals:
    rate = default_tax_rate() if tax_rate is None else Decimal(tax_rate)
    item_count = 0
    subtotal = 0
    for line in priced:
        item_count += line.quantity
        subtotal += line.line_total_cents
    return Totals(item_count, subtotal, Decimal(subtotal) * rate)


def compute_totals(line_items: Iterable, price_lookup, tax_rate: Optional[Decimal] = None) -> Totals:
    return totals_for(price_lines(line_items, price_lookup), tax_rate)
