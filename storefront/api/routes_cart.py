from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_cart_store, get_db
from storefront.api.schemas import CartItemAdd, CartItemUpdate, CartRead, Envelope, ok
from storefront.core.auth import get_cart_identity, get_current_identity, get_guest_identity
from storefront.core.config import settings
from storefront.core.errors import PriceUnavailableError, ValidationError
from storefront.services.pricing import CatalogPriceLookup, price_lines, totals_for
from storefront.store.cart_store import CartIdentity, CartStore

router = APIRouter()


def cart_view(store: CartStore, identity: CartIdentity, db: Session, strict: bool = True) -> dict:
    """Priced cart. With strict=False, unpriceable lines are listed as unavailable
    and left out of the summary instead of failing the request."""
    items = store.get_items(identity)
    lookup = CatalogPriceLookup(db)
    unavailable = []
    if strict:
        priced = price_lines(items, lookup)
    else:
        priced = []
        for it in items:
            try:
                priced.extend(price_lines([it], lookup))
            except PriceUnavailableError:
                unavailable.append(it)
    return {
        "items": [
            {
                "product_id": p.product_id,
                "variant_id": p.variant_id,
                "quantity": p.quantity,
                "title": p.title,
                "unit_price_cents": p.unit_price_cents,
                "line_total_cents": p.line_total_cents,
                "available": True,
            }
            for p in priced
        ] + [
            {"product_id": it.product_id, "variant_id": it.variant_id, "quantity": it.quantity, "available": False}
            for it in unavailable
        ],
        "summary": totals_for(priced).as_dict(settings.CURRENCY),
    }


@router.get("/v1/cart", response_model=Envelope[CartRead])
def get_my_cart(identity: CartIdentity = Depends(get_cart_identity), store: CartStore = Depends(get_cart_store),
                db: Session = Depends(get_db)):
    return ok(cart_view(store, identity, db))


@router.post("/v1/cart/items", response_model=Envelope[CartRead], status_code=201)
def add_item(payload: CartItemAdd, identity: CartIdentity = Depends(get_cart_identity),
             store: CartStore = Depends(get_cart_store), db: Session = Depends(get_db)):
    # the product/variant must be sellable before it can enter a cart
    CatalogPriceLookup(db).resolve(payload.product_id, payload.variant_id)
    store.add_item(identity, payload.product_id, payload.variant_id, payload.quantity)
    return ok(cart_view(store, identity, db, strict=False), "Item added to cart successfully")


@router.patch("/v1/cart/items/{product_id}", response_model=Envelope[CartRead])
def update_item(product_id: int, payload: CartItemUpdate, variant_id: Optional[int] = Query(default=None),
                identity: CartIdentity = Depends(get_cart_identity), store: CartStore = Depends(get_cart_store),
                db: Session = Depends(get_db)):
    store.update_quantity(identity, product_id, payload.quantity, variant_id)
    return ok(cart_view(store, identity, db, strict=False), "Cart item updated successfully")


@router.delete("/v1/cart/items/{product_id}", response_model=Envelope[CartRead])
def remove_item(product_id: int, variant_id: Optional[int] = Query(default=None),
                identity: CartIdentity = Depends(get_cart_identity), store: CartStore = Depends(get_cart_store),
                db: Session = Depends(get_db)):
    store.remove_item(identity, product_id, variant_id)
    return ok(cart_view(store, identity, db, strict=False), "Item removed from cart")


@router.post("/v1/cart/clear", response_model=Envelope[CartRead])
def clear(identity: CartIdentity = Depends(get_cart_identity), store: CartStore = Depends(get_cart_store),
          db: Session = Depends(get_db)):
    store.clear(identity)
    return ok(cart_view(store, identity, db, strict=False), "Cart cleared")


@router.post("/v1/cart/merge", response_model=Envelope[CartRead])
def merge_guest_cart(claims: dict = Depends(get_current_identity),
                     guest: Optional[CartIdentity] = Depends(get_guest_identity),
                     store: CartStore = Depends(get_cart_store), db: Session = Depends(get_db)):
    if guest is None:
        raise ValidationError("X-Guest-Session header is required to merge a guest cart")
    user = CartIdentity.user(claims["uid"])
    store.reconcile(guest, user)
    return ok(cart_view(store, user, db, strict=False), "Guest cart merged")
