from fastapi import APIRouter, Body, Depends, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.orm import Session
from typing import Any, List, Optional

from app.database import get_db
from app.services.auth_service import require_admin
from app.services.product_service import (
    ProductService,
    ProductNotFoundError,
    ProductValidationError,
    PersistenceError
)
from app.schemas.product import (
    ProductCreate,
    ProductUpdate,
    ProductResponse,
    ProductListResponse,
    BulkImportResponse
)
from app.schemas.inventory_history import InventoryHistoryResponse, InventoryHistoryListResponse

router = APIRouter(prefix="/products", tags=["Products"], dependencies=[Depends(require_admin)])


@router.get(
    "/",
    response_model=ProductListResponse,
    summary="List products",
    description="Get a filtered, sorted and paginated list of products."
)
def list_products(
    page: Optional[str] = Query(None, description="Page number (default 1)"),
    limit: Optional[str] = Query(None, description="Items per page (default 20)"),
    sort_by: Optional[str] = Query(
        None,
        alias="sortBy",
        description="One of id, name, brand, category, stock, created_at, updated_at"
    ),
    sort_dir: Optional[str] = Query(None, alias="sortDir", description="'asc' or 'desc' (default)"),
    name: Optional[str] = Query(None, description="Name contains (case-insensitive)"),
    category: Optional[str] = Query(None, description="Category contains (case-insensitive)"),
    status_filter: Optional[str] = Query(None, alias="status", description="Exact status"),
    in_stock: Optional[str] = Query(None, alias="inStock", description="'true' or 'false'"),
    db: Session = Depends(get_db)
):
    """
    Get a page of products.

    Invalid page/limit values fall back to their defaults and unknown sort
    columns sort by id.
    """
    service = ProductService(db)
    try:
        products, total, page_number, page_limit, total_pages = service.list_products(
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_dir=sort_dir,
            name=name,
            category=category,
            status=status_filter,
            in_stock=in_stock,
        )
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return ProductListResponse(
        items=[ProductResponse.model_validate(p) for p in products],
        total=total,
        page=page_number,
        limit=page_limit,
        total_pages=total_pages
    )


@router.get(
    "/categories/list",
    response_model=List[str],
    summary="List categories",
    description="Distinct non-empty product categories."
)
def list_categories(db: Session = Depends(get_db)):
    """Get all categories in use."""
    service = ProductService(db)
    try:
        return service.list_categories()
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.get(
    "/export",
    summary="Export products as CSV",
    description="Download every product as a CSV file, ordered by id.",
    response_class=Response,
    responses={200: {"content": {"text/csv": {}}}}
)
def export_products(db: Session = Depends(get_db)):
    """Export the catalog as products.csv."""
    service = ProductService(db)
    try:
        document = service.export_csv()
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return Response(
        content=document,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="products.csv"'}
    )


@router.post(
    "/",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new product",
    description="Create a new product. Only the name is required."
)
def create_product(
    product_data: ProductCreate,
    db: Session = Depends(get_db)
):
    """
    Create a new product.

    - **name**: Product name (required, unique)
    - **unit**, **category**, **brand**, **status**, **image**: optional
    - **stock**: Initial stock quantity, default 0
    """
    service = ProductService(db)
    try:
        return service.create(product_data)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post(
    "/bulk",
    response_model=BulkImportResponse,
    summary="Bulk create products",
    description="""
    Insert a JSON array of products in one transaction.

    Records without a name are skipped and records whose name already
    exists are ignored; neither aborts the batch.
    """
)
def bulk_create_products(
    payload: Any = Body(..., description="Array of product objects"),
    db: Session = Depends(get_db)
):
    """Bulk import from a JSON array."""
    if not isinstance(payload, list):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected array")

    service = ProductService(db)
    try:
        received, imported = service.bulk_insert(payload)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return BulkImportResponse(received=received, imported=imported, skipped=received - imported)


@router.post(
    "/import",
    response_model=BulkImportResponse,
    summary="Import products from CSV",
    description="""
    Upload a CSV file (form field `csvFile`) with a header row using the
    columns name, unit, category, brand, stock, status, image.
    """
)
def import_products(
    csv_file: Optional[UploadFile] = File(None, alias="csvFile"),
    db: Session = Depends(get_db)
):
    """Bulk import from an uploaded CSV file."""
    if csv_file is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No file uploaded (csvFile)"
        )

    service = ProductService(db)
    try:
        received, imported = service.import_csv_upload(csv_file.file)
    except ProductValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return BulkImportResponse(received=received, imported=imported, skipped=received - imported)


@router.get(
    "/{product_id}",
    response_model=ProductResponse,
    summary="Get product by ID"
)
def get_product(
    product_id: int,
    db: Session = Depends(get_db)
):
    """Get a product by ID."""
    service = ProductService(db)
    product = service.get_by_id(product_id)

    if not product:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product with ID {product_id} not found"
        )

    return product


@router.put(
    "/{product_id}",
    response_model=ProductResponse,
    summary="Update a product",
    description="""
    Partially update a product. Only the fields sent are changed.

    When `stock` is sent and differs from the stored quantity, an inventory
    history record is written with the optional `reason` (default "update").
    """
)
def update_product(
    product_id: int,
    product_data: ProductUpdate,
    db: Session = Depends(get_db)
):
    """Update a product and track stock changes."""
    service = ProductService(db)
    try:
        return service.update(product_id, product_data)
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ProductValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a product",
    description="Delete a product by ID. Its inventory history is kept."
)
def delete_product(
    product_id: int,
    db: Session = Depends(get_db)
):
    """Delete a product."""
    service = ProductService(db)
    try:
        deleted = service.delete(product_id)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Product with ID {product_id} not found"
        )

    return None


@router.get(
    "/{product_id}/history",
    response_model=InventoryHistoryListResponse,
    summary="Stock history",
    description="Stock changes for a product, newest first. Kept after the product is deleted."
)
def get_product_history(
    product_id: int,
    db: Session = Depends(get_db)
):
    """Get the inventory history of a product."""
    service = ProductService(db)
    try:
        records = service.get_history(product_id)
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return InventoryHistoryListResponse(
        items=[InventoryHistoryResponse.model_validate(r) for r in records],
        total=len(records)
    )
