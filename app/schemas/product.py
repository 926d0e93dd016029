from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Optional

# Column sizes shared by request validation and bulk import normalisation
FIELD_MAX_LENGTHS = {
    "name": 255,
    "unit": 50,
    "category": 255,
    "brand": 255,
    "status": 50,
    "image": 1024,
}

# Stock is stored as a 64-bit integer
STOCK_MIN = -(2 ** 63)
STOCK_MAX = 2 ** 63 - 1


class ProductBase(BaseModel):
    """Base schema for Product with common attributes."""
    name: str = Field(..., min_length=1, max_length=FIELD_MAX_LENGTHS["name"], description="Product name")
    unit: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["unit"], description="Unit of measure")
    category: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["category"], description="Product category")
    brand: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["brand"], description="Brand name")
    stock: int = Field(0, ge=STOCK_MIN, le=STOCK_MAX, description="On-hand quantity")
    status: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["status"], description="Product status")
    image: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["image"], description="Image URL")


class ProductCreate(ProductBase):
    """Schema for creating a new product."""
    pass


class ProductUpdate(BaseModel):
    """
    Schema for partially updating a product. All fields are optional.

    Only fields present in the request body are applied; unknown keys are
    ignored. `reason` is recorded in the inventory history when stock
    changes; a missing or empty reason is recorded as "update".
    """
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["name"], description="Product name")
    unit: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["unit"])
    category: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["category"])
    brand: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["brand"])
    stock: Optional[int] = Field(None, ge=STOCK_MIN, le=STOCK_MAX, description="New on-hand quantity")
    status: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["status"])
    image: Optional[str] = Field(None, max_length=FIELD_MAX_LENGTHS["image"])
    reason: Optional[str] = Field(None, max_length=255, description="Reason for a stock change")


class ProductResponse(BaseModel):
    """
    Schema for product response including all fields.

    Carries no input constraints: it describes whatever is stored.
    """
    id: int
    name: str
    unit: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    stock: int
    status: Optional[str] = None
    image: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProductListResponse(BaseModel):
    """Schema for paginated product list response."""
    items: list[ProductResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class BulkImportResponse(BaseModel):
    """Outcome of a bulk JSON or CSV import."""
    success: bool = True
    received: int = Field(..., description="Records in the request")
    imported: int = Field(..., description="Rows actually inserted")
    skipped: int = Field(
        ..., description="Records skipped for a missing name or oversized field, or ignored as duplicates"
    )
