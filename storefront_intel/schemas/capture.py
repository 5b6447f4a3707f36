"""Pydantic models for event capture endpoints (state snapshots from the storefront)."""

from pydantic import BaseModel, Field


class CartItemIn(BaseModel):
    id: str | int
    title: str = ""
    price: float = 0
    quantity: int = 1
    variant: str = ""


class VisitorIn(BaseModel):
    customer_email: str | None = None
    customer_id: str | int | None = None
    fingerprint: str | None = None
    fbp: str | None = None
    fbc: str | None = None
    page_url: str | None = None


class CartSnapshot(VisitorIn):
    items: list[CartItemIn] = Field(default_factory=list)


class CheckoutSnapshot(VisitorIn):
    items: list[CartItemIn] = Field(default_factory=list)
    email: str | None = None
    step: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    city: str | None = None
    postcode: str | None = None
    country: str | None = None


class ScrollUpdate(VisitorIn):
    scroll_top: float = 0
    window_height: float = 0
    document_height: float = 0
    new_page_view: bool = False


class EngagementTick(VisitorIn):
    elapsed_seconds: float | None = None


class PurchaseIn(VisitorIn):
    order_id: str | int
    total: float | None = None
    tax: float = 0
    shipping: float = 0
    items: list[CartItemIn] = Field(default_factory=list)
    billing: dict = Field(default_factory=dict)
