"""
FastAPI gateway exposing the reconciled cart and wishlist of each browser session.
"""
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cartsync.config import Config
from cartsync.database import get_session
from cartsync.exceptions import (
    ApiError,
    CartItemNotFoundError,
    LimitExceededError,
    ProductNotFoundError,
    StorageConnectionError,
    UnauthorizedError,
    ValidationError
)
from cartsync.middleware import RequestLoggingMiddleware
from cartsync.models import (
    CartItemRequest,
    CheckoutRequest,
    LoginRequest,
    ProductSnapshot,
    UpdateCartItemRequest,
    WishlistResponse
)
from cartsync.redis_client import close_redis_client, get_redis_client
from cartsync.resolution import RESOLVABLE, resolve_identifier
from cartsync.storefront import Storefront, StorefrontRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


def get_registry(request: Request) -> StorefrontRegistry:
    return request.app.state.registry


async def get_storefront(
    session_id: str = Header(..., alias="X-Session-ID", description="Storage origin identifier"),
    registry: StorefrontRegistry = Depends(get_registry)
) -> Storefront:
    if not session_id or not session_id.strip():
        raise HTTPException(status_code=400, detail="Session ID is required")
    storefront = registry.get(session_id.strip())
    await storefront.ensure_loaded()
    return storefront


def cart_body(storefront: Storefront) -> dict:
    cart = storefront.cart.cart
    return {
        "cart": cart.model_dump(mode="json", by_alias=True) if cart else None,
        "cartCount": storefront.cart.cart_count,
        "isCartOpen": storefront.cart.is_open,
    }


def wishlist_body(storefront: Storefront) -> dict:
    response = WishlistResponse(
        items=storefront.wishlist.items,
        item_count=storefront.wishlist.wishlist_count
    )
    return {
        "items": [item.model_dump(mode="json", by_alias=True) for item in response.items],
        "itemCount": response.item_count,
    }


# Health check endpoint
@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Always returns HTTP 200 if the application is running; reports guest
    storage reachability alongside.
    """
    redis_status = "healthy"
    redis_latency_ms = None

    try:
        redis_client = get_redis_client()
        ping_start = time.time()
        if not redis_client.ping():
            redis_status = "unhealthy"
        redis_latency_ms = round((time.time() - ping_start) * 1000, 2)
    except StorageConnectionError as e:
        logger.warning(f"Guest storage unavailable: {e}")
        redis_status = "unhealthy"

    return {
        "status": "healthy",
        "service": "cartsync",
        "redis": {"status": redis_status, "latency_ms": redis_latency_ms},
        "timestamp": time.time()
    }


# Session endpoints
@router.post("/session/login")
async def login(request: LoginRequest, storefront: Storefront = Depends(get_storefront)):
    """
    Announce the signed-in identity for this session.
    A new identity merges the guest cart into the server cart.
    """
    changed = await storefront.session.login(request.user_id, request.token)
    return {
        "success": True,
        "identityChanged": changed,
        **cart_body(storefront),
    }


@router.post("/session/logout")
async def logout(storefront: Storefront = Depends(get_storefront)):
    await storefront.session.logout()
    return {"success": True}


# Cart endpoints
@router.get("/cart")
async def get_cart(storefront: Storefront = Depends(get_storefront)):
    return cart_body(storefront)


@router.post("/cart/refresh")
async def refresh_cart(storefront: Storefront = Depends(get_storefront)):
    await storefront.cart.refresh_cart()
    return cart_body(storefront)


@router.post("/cart/items")
async def add_cart_item(request: CartItemRequest, storefront: Storefront = Depends(get_storefront)):
    """Add a product, incrementing the line if it is already in the cart"""
    await storefront.cart.add_to_cart(request.product_id, request.quantity)
    return {"success": True, "message": "Item added to cart", **cart_body(storefront)}


@router.put("/cart/items/{item_id}")
async def update_cart_item(
    item_id: str,
    request: UpdateCartItemRequest,
    storefront: Storefront = Depends(get_storefront)
):
    await storefront.cart.update_cart_item(item_id, request.quantity)
    return {"success": True, "message": "Cart item updated", **cart_body(storefront)}


@router.delete("/cart/items/{item_id}")
async def remove_cart_item(item_id: str, storefront: Storefront = Depends(get_storefront)):
    await storefront.cart.remove_from_cart(item_id)
    return {"success": True, "message": "Item removed from cart", **cart_body(storefront)}


@router.delete("/cart")
async def clear_cart(storefront: Storefront = Depends(get_storefront)):
    storefront.cart.clear_cart()
    return {"success": True, "message": "Cart cleared", **cart_body(storefront)}


@router.post("/checkout")
async def checkout(request: CheckoutRequest, storefront: Storefront = Depends(get_storefront)):
    """Place an order from the signed-in user's cart and clear it locally"""
    order = await storefront.checkout.place_order(request.address_id)
    return JSONResponse(status_code=201, content={"success": True, "order": order})


# Wishlist endpoints
@router.get("/wishlist")
async def get_wishlist(storefront: Storefront = Depends(get_storefront)):
    return wishlist_body(storefront)


@router.post("/wishlist/items")
async def add_wishlist_item(product: ProductSnapshot, storefront: Storefront = Depends(get_storefront)):
    await storefront.wishlist.add_to_wishlist(product)
    return wishlist_body(storefront)


@router.get("/wishlist/items/{product_id}")
async def wishlist_contains(product_id: str, storefront: Storefront = Depends(get_storefront)):
    return {"productId": product_id, "inWishlist": storefront.wishlist.is_in_wishlist(product_id)}


@router.delete("/wishlist/items/{product_id}")
async def remove_wishlist_item(product_id: str, storefront: Storefront = Depends(get_storefront)):
    await storefront.wishlist.remove_from_wishlist(product_id)
    return wishlist_body(storefront)


@router.delete("/wishlist")
async def clear_wishlist(storefront: Storefront = Depends(get_storefront)):
    await storefront.wishlist.clear_wishlist()
    return wishlist_body(storefront)


@router.get("/notifications")
async def get_notifications(storefront: Storefront = Depends(get_storefront)):
    """Toasts raised since the last poll"""
    return {"notifications": [n.model_dump() for n in storefront.notifier.drain()]}


# Admin endpoints
@router.get("/admin/resolve/{kind}")
def resolve(
    kind: str,
    identifier: str = Query(..., description="Id, exact name or slug"),
    session: Session = Depends(get_session)
):
    model = RESOLVABLE.get(kind)
    if model is None:
        raise HTTPException(status_code=404, detail=f"Unknown kind: {kind}")

    resolved_id = resolve_identifier(session, model, identifier)
    if resolved_id is None:
        raise HTTPException(status_code=404, detail=f"{kind.capitalize()} not found: {identifier}")
    return {"kind": kind, "identifier": identifier, "id": resolved_id}


# Error handlers
async def validation_error_handler(request, exc):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation error", "message": str(exc)}
    )


async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"error": "Not found", "message": str(exc)}
    )


async def unauthorized_handler(request, exc):
    return JSONResponse(
        status_code=401,
        content={"error": "Unauthorized", "message": str(exc)}
    )


async def api_error_handler(request, exc):
    return JSONResponse(
        status_code=502,
        content={"error": "Storefront API error", "message": str(exc), "upstream_status": exc.status_code}
    )


async def storage_error_handler(request, exc):
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "message": "Guest storage unavailable"}
    )


async def generic_exception_handler(request, exc):
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc),
            "type": type(exc).__name__
        }
    )


def create_app(registry: Optional[StorefrontRegistry] = None) -> FastAPI:
    """Build the gateway; tests pass a registry with in-memory storage"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.registry.close()
        close_redis_client()

    app = FastAPI(
        title="Cart Sync API",
        description="Cart and wishlist reconciliation for guest and signed-in shoppers",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.registry = registry or StorefrontRegistry()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(LimitExceededError, validation_error_handler)
    app.add_exception_handler(CartItemNotFoundError, not_found_handler)
    app.add_exception_handler(ProductNotFoundError, not_found_handler)
    app.add_exception_handler(UnauthorizedError, unauthorized_handler)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StorageConnectionError, storage_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.APP_PORT)
