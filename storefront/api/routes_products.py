from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import select
from storefront.api.deps import get_db
from storefront.api.schemas import Envelope, ProductCreate, ProductRead, ProductUpdate, VariantCreate, VariantRead, VariantUpdate, ok
from storefront.core.auth import require_admin
from storefront.core.errors import NotFoundError
from storefront.db import models

router = APIRouter()

def _product(db: Session, product_id: int) -> models.Product:
    obj = db.get(models.Product, product_id)
    if not obj: raise NotFoundError('product')
    return obj

def _sku_taken(db: Session, sku: str) -> bool:
    return bool(
        db.query(models.Product).filter(models.Product.sku == sku).first()
        or db.query(models.ProductVariant).filter(models.ProductVariant.sku == sku).first()
    )

@router.get('', response_model=Envelope[List[ProductRead]])
def list_products(db: Session = Depends(get_db), q: Optional[str] = None, limit: int = 50, offset: int = 0, active: Optional[bool] = None):
    stmt = select(models.Product)
    if q:
        q_like = f"%{q.lower()}%"
        stmt = stmt.where(models.Product.title.ilike(q_like))
    if active is not None: stmt = stmt.where(models.Product.active == active)
    stmt = stmt.order_by(models.Product.id).offset(offset).limit(limit)
    return ok(db.execute(stmt).scalars().unique().all())

@router.get('/{product_id}', response_model=Envelope[ProductRead])
def get_product(product_id: int, db: Session = Depends(get_db)):
    return ok(_product(db, product_id))

@router.post('', response_model=Envelope[ProductRead], status_code=201, dependencies=[Depends(require_admin)])
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    skus = [payload.sku] + [v.sku for v in payload.variants]
    if len(set(skus)) != len(skus) or any(_sku_taken(db, s) for s in skus):
        raise HTTPException(status_code=409, detail='SKU already exists')
    obj = models.Product(**payload.model_dump(exclude={'variants'}))
    obj.variants = [models.ProductVariant(**v.model_dump()) for v in payload.variants]
    db.add(obj); db.commit(); db.refresh(obj)
    return ok(obj)

@router.patch('/{product_id}', response_model=Envelope[ProductRead], dependencies=[Depends(require_admin)])
def update_product(product_id: int, payload: ProductUpdate, db: Session = Depends(get_db)):
    obj = _product(db, product_id)
    # existing orders keep their frozen unit prices; only carts see the change
    for k, v in payload.model_dump(exclude_unset=True).items(): setattr(obj, k, v)
    db.add(obj); db.commit(); db.refresh(obj)
    return ok(obj)

@router.post('/{product_id}/variants', response_model=Envelope[VariantRead], status_code=201, dependencies=[Depends(require_admin)])
def create_variant(product_id: int, payload: VariantCreate, db: Session = Depends(get_db)):
    obj = _product(db, product_id)
    if _sku_taken(db, payload.sku):
        raise HTTPException(status_code=409, detail='SKU already exists')
    variant = models.ProductVariant(product=obj, **payload.model_dump())
    db.add(variant); db.commit(); db.refresh(variant)
    return ok(variant)

@router.patch('/{product_id}/variants/{variant_id}', response_model=Envelope[VariantRead], dependencies=[Depends(require_admin)])
def update_variant(product_id: int, variant_id: int, payload: VariantUpdate, db: Session = Depends(get_db)):
    variant = db.get(models.ProductVariant, variant_id)
    if not variant or variant.product_id != product_id: raise NotFoundError('variant')
    for k, v in payload.model_dump(exclude_unset=True).items(): setattr(variant, k, v)
    db.add(variant); db.commit(); db.refresh(variant)
    return ok(variant)
