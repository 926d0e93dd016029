import csv
import logging
import math
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, BinaryIO, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import insert
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from app.config import get_settings
from app.models.inventory_history import InventoryHistory
from app.models.product import Product
from app.schemas.product import (
    FIELD_MAX_LENGTHS,
    STOCK_MAX,
    STOCK_MIN,
    ProductCreate,
    ProductUpdate,
)
from app.utils.cache import cache_service
from app.utils.csv_io import encode_products_csv, read_csv_records, EXPORT_COLUMNS

logger = logging.getLogger(__name__)

settings = get_settings()

# Columns that may appear in ORDER BY; anything else sorts by id
SORTABLE_COLUMNS = {
    "id": Product.id,
    "name": Product.name,
    "brand": Product.brand,
    "category": Product.category,
    "stock": Product.stock,
    "created_at": Product.created_at,
    "updated_at": Product.updated_at,
}

MUTABLE_FIELDS = ("name", "unit", "category", "brand", "stock", "status", "image")
OPTIONAL_TEXT_FIELDS = ("unit", "category", "brand", "status", "image")

DEFAULT_REASON = "update"


class ProductNotFoundError(Exception):
    """Exception raised when the requested product doesn't exist."""
    pass


class ProductValidationError(Exception):
    """Exception raised when a request carries missing or unusable data."""
    pass


class PersistenceError(Exception):
    """Exception raised when a database operation fails and is rolled back."""
    pass


def coerce_positive_int(value: Any, default: int, maximum: int = STOCK_MAX) -> int:
    """
    Parse value as a positive integer, falling back to default.

    Values above maximum are clamped to it.
    """
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    if number <= 0:
        return default
    return min(number, maximum)


def coerce_stock(value: Any) -> int:
    """
    Parse a stock quantity.

    Absent, non-numeric or out-of-range (beyond 64-bit) input counts as 0.
    """
    if value is None:
        return 0
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        try:
            as_float = float(value)
        except (TypeError, ValueError):
            return 0
        if not math.isfinite(as_float):
            return 0
        number = int(as_float)
    if not STOCK_MIN <= number <= STOCK_MAX:
        return 0
    return number


def normalize_record(record: Any) -> Optional[dict]:
    """
    Turn a raw import record into column values for a products insert.

    Returns None for records that must be skipped: not a mapping, without
    a usable name, or with a text field longer than its column allows
    (the same limits ProductCreate enforces).
    """
    if not isinstance(record, Mapping):
        return None
    name = record.get("name")
    if name is None or not str(name).strip():
        return None

    values = {"name": str(name).strip()}
    for field in OPTIONAL_TEXT_FIELDS:
        value = record.get(field)
        values[field] = str(value) if value not in (None, "") else None

    for field, max_length in FIELD_MAX_LENGTHS.items():
        if values[field] is not None and len(values[field]) > max_length:
            return None

    values["stock"] = coerce_stock(record.get("stock"))
    return values


class ProductService:
    """
    Service class for the product inventory.

    This service handles:
    - Filtered, sorted and paginated listing
    - Creating, reading and deleting products
    - Partial updates that record stock changes in the inventory history
    - Bulk ingestion from JSON records or an uploaded CSV file
    - CSV export of the whole catalog
    """

    CATEGORIES_CACHE_PREFIX = "categories"
    CATEGORIES_CACHE_KEY = "list"

    def __init__(self, db: Session):
        self.db = db

    def create(self, product_data: ProductCreate) -> Product:
        """
        Create a new product.

        Raises:
            PersistenceError: If the insert fails (e.g. duplicate name)
        """
        product = Product(**product_data.model_dump())
        try:
            self.db.add(product)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error creating product '{product_data.name}': {e}")
            raise PersistenceError(str(e)) from e

        self.db.refresh(product)
        self._invalidate_categories()
        logger.info(f"Product #{product.id} created")
        return product

    def get_by_id(self, product_id: int) -> Optional[Product]:
        """Get a product by ID."""
        return self.db.query(Product).filter(Product.id == product_id).first()

    def list_products(
        self,
        page: Any = None,
        limit: Any = None,
        sort_by: Optional[str] = None,
        sort_dir: Optional[str] = None,
        name: Optional[str] = None,
        category: Optional[str] = None,
        status: Optional[str] = None,
        in_stock: Optional[str] = None,
    ) -> Tuple[List[Product], int, int, int, int]:
        """
        Get a filtered, sorted page of products.

        Filter values only ever reach the database as bound parameters. The
        sort column is looked up in SORTABLE_COLUMNS, so unknown names
        behave exactly like "id".

        Args:
            page: Page number (1-indexed); invalid values mean 1
            limit: Page size; invalid values mean the default page size and
                values above MAX_PAGE_SIZE are clamped to it
            sort_by: Column to sort by
            sort_dir: "asc" for ascending, anything else for descending
            name: Case-insensitive substring of the product name
            category: Case-insensitive substring of the category
            status: Exact status
            in_stock: "true" for stock > 0, "false" for stock = 0

        Returns:
            Tuple of (products, total count, page, limit, total pages)
        """
        page = coerce_positive_int(page, 1)
        limit = coerce_positive_int(limit, settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)

        column = SORTABLE_COLUMNS.get(sort_by, Product.id)
        if sort_dir == "asc":
            ordering = (column.asc(), Product.id.asc())
        else:
            ordering = (column.desc(), Product.id.desc())

        query = self.db.query(Product)
        if name:
            query = query.filter(Product.name.ilike(f"%{name}%"))
        if category:
            query = query.filter(Product.category.ilike(f"%{category}%"))
        if status:
            query = query.filter(Product.status == status)
        if in_stock == "true":
            query = query.filter(Product.stock > 0)
        elif in_stock == "false":
            query = query.filter(Product.stock == 0)

        try:
            total = query.count()
            offset = (page - 1) * limit
            if offset > STOCK_MAX:
                # Past any possible row; the database cannot bind this offset
                products = []
            else:
                products = query.order_by(*ordering).offset(offset).limit(limit).all()
        except SQLAlchemyError as e:
            logger.error(f"Error listing products: {e}")
            raise PersistenceError(str(e)) from e

        total_pages = math.ceil(total / limit)
        return products, total, page, limit, total_pages

    def update(self, product_id: int, product_data: ProductUpdate) -> Product:
        """
        Partially update a product and record any stock change.

        The product row is read with FOR UPDATE and written in the same
        transaction, so the before/after quantities in the history record
        always describe this update and not a concurrent one.

        Algorithm:
        1. Lock and load the product
        2. Apply only the fields present in the request
        3. Refresh updated_at
        4. If stock was sent and differs from the stored value, append one
           inventory history record
        5. Commit

        Args:
            product_id: ID of product to update
            product_data: Fields to change; unset fields are left alone

        Returns:
            Updated product instance

        Raises:
            ProductNotFoundError: If product doesn't exist
            ProductValidationError: If no updatable field was sent or name is empty
            PersistenceError: If the database rejects the update
        """
        fields = product_data.model_dump(exclude_unset=True)
        reason = fields.pop("reason", None) or DEFAULT_REASON
        fields = {key: value for key, value in fields.items() if key in MUTABLE_FIELDS}

        try:
            product = (
                self.db.query(Product)
                .filter(Product.id == product_id)
                .with_for_update()
                .first()
            )
            if not product:
                raise ProductNotFoundError(f"Product with ID {product_id} not found")

            if not fields:
                raise ProductValidationError("No fields to update")
            if "name" in fields and not (fields["name"] or "").strip():
                raise ProductValidationError("Product name cannot be empty")
            if "stock" in fields and fields["stock"] is None:
                fields["stock"] = 0

            before_qty = int(product.stock or 0)

            for field, value in fields.items():
                setattr(product, field, value)
            product.updated_at = func.now()

            if "stock" in fields:
                after_qty = int(fields["stock"])
                if after_qty != before_qty:
                    self.db.add(InventoryHistory(
                        product_id=product_id,
                        change_amount=after_qty - before_qty,
                        reason=reason,
                        before_qty=before_qty,
                        after_qty=after_qty,
                    ))
                    logger.info(
                        f"Stock of product #{product_id} changed {before_qty} -> {after_qty} ({reason})"
                    )

            self.db.commit()

        except (ProductNotFoundError, ProductValidationError):
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating product #{product_id}: {e}")
            raise PersistenceError(str(e)) from e

        self.db.refresh(product)
        self._invalidate_categories()
        return product

    def delete(self, product_id: int) -> bool:
        """
        Delete a product. Its inventory history is kept.

        Returns:
            True if deleted, False if not found
        """
        product = self.get_by_id(product_id)

        if not product:
            return False

        try:
            self.db.delete(product)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error deleting product #{product_id}: {e}")
            raise PersistenceError(str(e)) from e

        self._invalidate_categories()
        logger.info(f"Product #{product_id} deleted")
        return True

    def get_history(self, product_id: int) -> List[InventoryHistory]:
        """Stock-change records for a product, newest first."""
        try:
            return (
                self.db.query(InventoryHistory)
                .filter(InventoryHistory.product_id == product_id)
                .order_by(InventoryHistory.change_date.desc(), InventoryHistory.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error reading history for product #{product_id}: {e}")
            raise PersistenceError(str(e)) from e

    def list_categories(self) -> List[str]:
        """Distinct non-empty categories, cached in Redis."""
        cached = cache_service.get(self.CATEGORIES_CACHE_PREFIX, self.CATEGORIES_CACHE_KEY)
        if cached is not None:
            return cached

        try:
            rows = (
                self.db.query(Product.category)
                .filter(Product.category.isnot(None), Product.category != "")
                .distinct()
                .order_by(Product.category)
                .all()
            )
        except SQLAlchemyError as e:
            logger.error(f"Error listing categories: {e}")
            raise PersistenceError(str(e)) from e

        categories = [row[0] for row in rows]
        cache_service.set(self.CATEGORIES_CACHE_PREFIX, self.CATEGORIES_CACHE_KEY, categories)
        return categories

    def bulk_insert(self, records: Iterable[Any]) -> Tuple[int, int]:
        """
        Insert many products in a single transaction.

        Records without a name are skipped. Records whose name already
        exists are ignored by the database (ON CONFLICT DO NOTHING) rather
        than overwriting the stored product. Any database error rolls back
        the whole batch.

        Args:
            records: Raw key-value records from a JSON body or CSV rows

        Returns:
            Tuple of (records received, rows actually inserted)

        Raises:
            PersistenceError: If the batch fails and is rolled back
        """
        records = list(records)
        statement = self._insert_ignoring_conflicts()
        imported = 0

        try:
            for record in records:
                values = normalize_record(record)
                if values is None:
                    continue
                result = self.db.execute(statement, values)
                imported += max(result.rowcount, 0)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Bulk import failed, batch rolled back: {e}")
            raise PersistenceError(str(e)) from e

        if imported:
            self._invalidate_categories()
        logger.info(f"Bulk import: {imported} of {len(records)} records inserted")
        return len(records), imported

    def import_csv_upload(self, upload: BinaryIO) -> Tuple[int, int]:
        """
        Import products from an uploaded CSV file.

        The upload is spooled to a temporary file in UPLOAD_DIR, parsed and
        passed to bulk_insert. The temporary file is removed whether or not
        the import succeeds.

        Raises:
            ProductValidationError: If the file is not valid UTF-8 CSV
            PersistenceError: If the batch fails and is rolled back
        """
        upload_dir = Path(settings.UPLOAD_DIR)
        upload_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(suffix=".csv", dir=upload_dir)
        try:
            with os.fdopen(fd, "wb") as tmp:
                shutil.copyfileobj(upload, tmp)
            try:
                with open(tmp_path, newline="", encoding="utf-8-sig") as fh:
                    records = read_csv_records(fh)
            except (UnicodeDecodeError, csv.Error) as e:
                raise ProductValidationError(f"Could not parse CSV file: {e}") from e
            return self.bulk_insert(records)
        finally:
            Path(tmp_path).unlink(missing_ok=True)

    def export_csv(self) -> str:
        """Every product as a CSV document, ordered by ascending id."""
        try:
            products = self.db.query(Product).order_by(Product.id.asc()).all()
        except SQLAlchemyError as e:
            logger.error(f"Error exporting products: {e}")
            raise PersistenceError(str(e)) from e

        rows = ({column: getattr(p, column) for column in EXPORT_COLUMNS} for p in products)
        return encode_products_csv(rows)

    def _insert_ignoring_conflicts(self):
        """Dialect-specific INSERT that silently drops rows violating a unique key."""
        table = Product.__table__
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table).on_conflict_do_nothing()
        if dialect == "mysql":
            return mysql.insert(table).prefix_with("IGNORE")
        if dialect == "sqlite":
            return sqlite.insert(table).on_conflict_do_nothing()
        return insert(table)

    def _invalidate_categories(self) -> None:
        """Invalidate the cached category list."""
        cache_service.delete(self.CATEGORIES_CACHE_PREFIX, self.CATEGORIES_CACHE_KEY)
