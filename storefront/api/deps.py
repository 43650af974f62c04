from fastapi import Depends, Request
from sqlalchemy.orm import Session

from storefront.db.session import SessionLocal
from storefront.services.orders import OrderService
from storefront.services.payments import PaymentGateway
from storefront.store.cart_store import CartStore

def get_db():
    db = SessionLocal()
    try: yield db
    finally: db.close()

def get_cart_store(request: Request) -> CartStore:
    return request.app.state.cart_store

def get_payment_gateway(request: Request) -> PaymentGateway:
    return request.app.state.payment_gateway

def get_order_service(db: Session = Depends(get_db), store: CartStore = Depends(get_cart_store),
                      gateway: PaymentGateway = Depends(get_payment_gateway)) -> OrderService:
    return OrderService(db, store, gateway)
