"""Shape hints for schema-constrained extraction goals.

Models allow extra keys: extraction documents are open-ended and the hint
only pins the types of the fields it names.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _ShapeHint(BaseModel):
    model_config = ConfigDict(
        extra="allow",
        str_strip_whitespace=True,
    )


class ProductVariant(_ShapeHint):
    name: Optional[str] = None
    value: Optional[str] = None
    price: Optional[Union[str, float]] = None


class ProductExtraction(_ShapeHint):
    """Product detail page contract."""

    title: Optional[str] = None
    price: Optional[Union[str, float]] = None
    original_price: Optional[Union[str, float]] = None
    description: Optional[str] = None
    availability: Optional[str] = None
    sku: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    specs: Dict[str, Any] = Field(default_factory=dict)
    variants: List[ProductVariant] = Field(default_factory=list)


class ListingProduct(_ShapeHint):
    title: Optional[str] = None
    price: Optional[Union[str, float]] = None
    url: Optional[str] = None
    image_url: Optional[str] = None


class ProductListingExtraction(_ShapeHint):
    """Category or search result page contract."""

    products: List[ListingProduct] = Field(default_factory=list)


class ReviewExtraction(_ShapeHint):
    rating: Optional[float] = Field(default=None, ge=0.0, le=5.0)
    review_count: Optional[int] = Field(default=None, ge=0)
    reviews: List[Dict[str, Any]] = Field(default_factory=list)


SHAPE_HINTS = {
    "product": ProductExtraction,
    "listing": ProductListingExtraction,
    "review": ReviewExtraction,
}
