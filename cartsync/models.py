"""
Pydantic models for carts, wishlists, guest storage records and gateway requests.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CENTS = Decimal("0.01")


class ApiModel(BaseModel):
    """Base model speaking the storefront API's camelCase JSON"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ProductSnapshot(ApiModel):
    """Denormalized product display fields captured when a line is added"""
    id: str = Field(..., description="Product identifier")
    name: str = Field("", description="Display name")
    slug: Optional[str] = None
    price: Decimal = Field(..., description="List price")
    sale_price: Optional[Decimal] = Field(None, description="Sale price, when on offer")
    stock: Optional[int] = None
    images: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    brand_id: Optional[str] = None

    @property
    def unit_price(self) -> Decimal:
        """Price charged per unit: sale price when present"""
        return self.sale_price if self.sale_price else self.price

    def model_post_init(self, __context) -> None:
        if self.image_url is None and self.images:
            self.image_url = self.images[0]


class CartItem(ApiModel):
    """Cart line item"""
    id: str = Field(..., description="Line identifier (product id for guest lines)")
    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(..., ge=1, description="Item quantity")
    product: Optional[ProductSnapshot] = None

    @property
    def line_total(self) -> Decimal:
        if self.product is None:
            return Decimal("0")
        return self.product.unit_price * self.quantity


class Cart(ApiModel):
    """Cart view shared by guest and server-backed carts"""
    id: str = Field(..., description="Server cart id or the guest sentinel")
    items: List[CartItem] = Field(default_factory=list)
    item_count: int = 0
    subtotal: Decimal = Decimal("0")

    @classmethod
    def from_items(cls, cart_id: str, items: List[CartItem]) -> "Cart":
        """Build a cart whose totals are derived from its items"""
        cart = cls(id=cart_id, items=list(items))
        cart.recompute_totals()
        return cart

    def recompute_totals(self) -> None:
        self.item_count = sum(item.quantity for item in self.items)
        subtotal = sum((item.line_total for item in self.items), Decimal("0"))
        self.subtotal = subtotal.quantize(CENTS, rounding=ROUND_HALF_UP)

    def find_item(self, item_id: str) -> Optional[CartItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


class GuestCartLine(ApiModel):
    """Persisted guest cart record: only the product reference and quantity"""
    product_id: str
    quantity: int = Field(..., ge=1)


class MergeResult(BaseModel):
    """Outcome of a guest-to-user cart merge"""
    attempted: int = 0
    merged: int = 0
    failed: List[str] = Field(default_factory=list)


class Notification(BaseModel):
    """User-visible toast"""
    level: str
    message: str


# Gateway request/response models

class CartItemRequest(BaseModel):
    """Request model for adding items to the cart"""
    product_id: str = Field(..., description="Product identifier")
    quantity: int = Field(1, ge=1, description="Item quantity")


class UpdateCartItemRequest(BaseModel):
    """Request model for updating a line quantity"""
    quantity: int = Field(..., description="New quantity")

    @field_validator("quantity")
    @classmethod
    def validate_quantity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1")
        return v


class LoginRequest(BaseModel):
    """Request model announcing an authenticated identity"""
    user_id: str = Field(..., description="Authenticated user identifier")
    token: str = Field(..., description="Bearer token issued by the storefront")


class CheckoutRequest(BaseModel):
    """Request model for placing an order from the current cart"""
    address_id: str = Field(..., description="Shipping address identifier")


class WishlistResponse(BaseModel):
    """Response model for wishlist retrieval"""
    items: List[ProductSnapshot] = Field(default_factory=list)
    item_count: int = 0
