"""Pydantic models for customer intelligence endpoints."""

from typing import Literal

from pydantic import BaseModel, Field

OfferStatus = Literal["pending", "viewed", "accepted", "added_to_cart", "rejected", "completed", "purchased"]


class TrackCustomer(BaseModel):
    email: str | None = None
    customer_id: str | int | None = None
    event_type: str = "session_track"
    fingerprint: str | None = None
    session_id: str | None = None
    fbp: str | None = None
    fbc: str | None = None
    product_id: str | int | None = None
    product_name: str | None = None
    product_price: float | None = None
    bundle_data: dict | None = None
    search_query: str | None = None
    time_on_page: float | None = None
    scroll_depth: float | None = None


class BundleStatusUpdate(BaseModel):
    offer_id: int
    status: OfferStatus
    customer_email: str | None = None
    session_id: str | None = None
    conversion_value: float | None = None


class CatalogProduct(BaseModel):
    id: str | int
    name: str
    price: float = 0


class Recalculate(BaseModel):
    customer_email: str
    customer_id: str | int | None = None
    orders: list[dict] = Field(default_factory=list)
    catalog: list[CatalogProduct] = Field(default_factory=list)
    generate_bundle: bool = True


class SuggestionRequest(BaseModel):
    purchased_ids: list[str | int] | None = None
    orders: list[dict] | None = None
    cart_items: list[dict] = Field(default_factory=list)
    subtotal: float
