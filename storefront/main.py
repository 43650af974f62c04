import logging
from fastapi import FastAPI
from storefront.version import VERSION
from storefront.api import routes_admin, routes_auth, routes_cart, routes_orders, routes_payments, routes_products
from storefront.api.error_handlers import register_error_handlers
from storefront.core.config import settings
from storefront.core.logging import setup_logging
from storefront.kafka import consumer as payment_consumer
from storefront.kafka import producer
from storefront.services.payments import build_payment_gateway
from storefront.store.cart_store import build_cart_store
from prometheus_fastapi_instrumentator import Instrumentator

setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger(__name__)

# Create instrumentator first
instrumentator = Instrumentator()

app = FastAPI(title="Storefront Service", version=VERSION)

# Instrument the app BEFORE adding routes or middleware
instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/metrics",
    should_gzip=True,
)

app.state.cart_store = build_cart_store(settings)
app.state.payment_gateway = build_payment_gateway(settings)

register_error_handlers(app)

@app.get("/health")
def health():
    return {"status": "ok"}

@app.get("/v1/_info")
def info():
    return {"service": "storefront", "version": VERSION, "cart_backend": settings.CART_BACKEND}

@app.on_event("startup")
async def startup_event():
    for route in app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            logger.debug("%s %s", sorted(route.methods), route.path)
    app.state.cart_store.backend.reload()
    payment_consumer.start()

@app.on_event("shutdown")
async def shutdown_event():
    payment_consumer.stop()
    app.state.cart_store.backend.flush()
    producer.close()

app.include_router(routes_auth.router, prefix="/v1/auth", tags=["auth"])
app.include_router(routes_products.router, prefix="/v1/products", tags=["products"])
app.include_router(routes_cart.router, tags=["cart"])
app.include_router(routes_orders.router, tags=["orders"])
app.include_router(routes_payments.router, tags=["payments"])
app.include_router(routes_admin.router, prefix="/v1/admin", tags=["admin"])
