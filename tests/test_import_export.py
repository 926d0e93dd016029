"""Tests for bulk JSON import, CSV import and CSV export."""
import os
from unittest.mock import patch

import pytest
from sqlalchemy import insert

from app.models.product import Product
from app.services.product_service import ProductService, PersistenceError


def _upload(client, content: bytes, filename: str = "products.csv"):
    return client.post(
        "/api/v1/products/import",
        files={"csvFile": (filename, content, "text/csv")}
    )


def test_bulk_insert(client):
    """Every named record is inserted."""
    response = client.post(
        "/api/v1/products/bulk",
        json=[
            {"name": "Milk", "category": "Dairy", "stock": 4},
            {"name": "Bread", "unit": "loaf"},
        ]
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "received": 2, "imported": 2, "skipped": 0}

    items = client.get("/api/v1/products/?sortBy=id&sortDir=asc").json()["items"]
    assert [i["name"] for i in items] == ["Milk", "Bread"]
    assert items[0]["stock"] == 4
    assert items[1]["stock"] == 0
    assert items[1]["unit"] == "loaf"
    assert items[1]["category"] is None


def test_bulk_insert_skips_records_without_name(client):
    """A nameless record is skipped without aborting the batch."""
    response = client.post(
        "/api/v1/products/bulk",
        json=[
            {"name": "A"},
            {"stock": 3},
            {"name": ""},
            {"name": "B"},
            "not an object",
        ]
    )

    assert response.status_code == 200
    data = response.json()
    assert data["received"] == 5
    assert data["imported"] == 2
    assert data["skipped"] == 3
    assert client.get("/api/v1/products/").json()["total"] == 2


def test_bulk_insert_ignores_existing_names(client, create_product):
    """A record whose name exists is dropped, not duplicated or overwritten."""
    create_product(name="Milk", stock=10)

    response = client.post(
        "/api/v1/products/bulk",
        json=[{"name": "Milk", "stock": 99}, {"name": "Milk", "stock": 1}, {"name": "Eggs"}]
    )

    assert response.status_code == 200
    assert response.json()["imported"] == 1
    assert response.json()["skipped"] == 2

    data = client.get("/api/v1/products/?name=Milk").json()
    assert data["total"] == 1
    assert data["items"][0]["stock"] == 10


def test_bulk_insert_coerces_stock(client):
    """Numeric strings are parsed; anything else becomes 0."""
    client.post(
        "/api/v1/products/bulk",
        json=[
            {"name": "s1", "stock": "12"},
            {"name": "s2", "stock": "lots"},
            {"name": "s3", "stock": None},
            {"name": "s4", "stock": 2.9},
        ]
    )

    items = client.get("/api/v1/products/?sortBy=name&sortDir=asc").json()["items"]
    assert [i["stock"] for i in items] == [12, 0, 0, 2]


def test_bulk_insert_requires_array(client):
    """A JSON object instead of an array is a 400."""
    response = client.post("/api/v1/products/bulk", json={"name": "Milk"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Expected array"


def test_bulk_insert_rolls_back_whole_batch(db_session):
    """A database error part-way through leaves nothing behind."""
    service = ProductService(db_session)
    plain_insert = insert(Product.__table__)

    with patch.object(ProductService, "_insert_ignoring_conflicts", return_value=plain_insert):
        with pytest.raises(PersistenceError):
            service.bulk_insert([{"name": "First"}, {"name": "Dup"}, {"name": "Dup"}])

    assert db_session.query(Product).count() == 0


def test_import_csv(client, upload_dir):
    """CSV rows go through the same ingestion and the upload is removed."""
    content = (
        b"name,unit,category,brand,stock,status,image\n"
        b"Milk,l,Dairy,Farmhouse,5,active,\n"
        b",kg,Nameless,,3,,\n"
        b"\"Cheese, aged\",kg,Dairy,,2,active,\n"
    )

    response = _upload(client, content)

    assert response.status_code == 200
    data = response.json()
    assert data["received"] == 3
    assert data["imported"] == 2

    items = client.get("/api/v1/products/?sortBy=id&sortDir=asc").json()["items"]
    assert [i["name"] for i in items] == ["Milk", "Cheese, aged"]
    assert items[0]["unit"] == "l"
    assert items[0]["stock"] == 5
    assert items[0]["image"] is None
    assert os.listdir(upload_dir) == []


def test_import_csv_uppercase_headers_and_bom(client):
    """Header names are matched case-insensitively and a BOM is tolerated."""
    content = b"\xef\xbb\xbfNAME,STOCK\nSoap,7\n"

    response = _upload(client, content)

    assert response.status_code == 200
    assert response.json()["imported"] == 1
    item = client.get("/api/v1/products/").json()["items"][0]
    assert item["name"] == "Soap"
    assert item["stock"] == 7


def test_import_csv_missing_file(client):
    """Posting without a csvFile part is a 400."""
    response = client.post("/api/v1/products/import")

    assert response.status_code == 400
    assert "csvFile" in response.json()["detail"]


def test_import_csv_invalid_encoding_removes_upload(client, upload_dir):
    """An unreadable upload is rejected and still cleaned up."""
    response = _upload(client, b"name\n\xff\xfe\xfa\n")

    assert response.status_code == 400
    assert os.listdir(upload_dir) == []


def test_import_csv_failure_removes_upload(client, upload_dir):
    """The temporary file is removed even when the batch fails."""
    with patch.object(ProductService, "bulk_insert", side_effect=PersistenceError("disk full")):
        response = _upload(client, b"name\nMilk\n")

    assert response.status_code == 500
    assert response.json()["detail"] == "disk full"
    assert os.listdir(upload_dir) == []


def test_export_csv(client, create_product):
    """Header first, rows by ascending id, quoting only where needed."""
    create_product(name='Milk, "Whole"', unit="l", stock=3)
    create_product(name="Notes\nMultiline", category="Misc")
    create_product(name="Plain")

    response = client.get("/api/v1/products/export")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert 'filename="products.csv"' in response.headers["content-disposition"]

    body = response.text
    assert body.startswith(
        "id,name,unit,category,brand,stock,status,image,created_at,updated_at\n"
    )
    assert '1,"Milk, ""Whole""",l,,,3,,,' in body
    assert '2,"Notes\nMultiline",,Misc,,0,,,' in body
    assert "\n3,Plain,,,,0,,," in body
    assert "null" not in body
    assert "None" not in body


def test_export_empty_catalog(client):
    """With no products the export is just the header."""
    response = client.get("/api/v1/products/export")

    assert response.text == "id,name,unit,category,brand,stock,status,image,created_at,updated_at"


def test_export_then_import_round_trip(client, create_product):
    """Re-importing an export reproduces the same products."""
    create_product(name="Milk", unit="l", category="Dairy", brand="Farm", stock=5, status="active")
    create_product(name='Cheese, "Blue"', category="Dairy", stock=0)
    create_product(name="Bread", image="http://img/bread.png", stock=-1)

    def snapshot():
        items = client.get("/api/v1/products/?sortBy=name&sortDir=asc").json()["items"]
        return [
            {k: i[k] for k in ("name", "unit", "category", "brand", "stock", "status", "image")}
            for i in items
        ]

    before = snapshot()
    exported = client.get("/api/v1/products/export").content

    # Importing into a catalog that still has the rows adds nothing
    again = _upload(client, exported).json()
    assert again["received"] == 3
    assert again["imported"] == 0

    for item in client.get("/api/v1/products/").json()["items"]:
        client.delete(f"/api/v1/products/{item['id']}")

    response = _upload(client, exported)
    assert response.json()["imported"] == 3
    assert snapshot() == before


def test_bulk_insert_skips_oversized_fields(client):
    """Rows exceeding a column size are skipped and never break later reads."""
    response = client.post(
        "/api/v1/products/bulk",
        json=[
            {"name": "x" * 300},
            {"name": "ok", "status": "s" * 60},
            {"name": "fits", "status": "s" * 50},
        ]
    )

    assert response.status_code == 200
    data = response.json()
    assert data["received"] == 3
    assert data["imported"] == 1
    assert data["skipped"] == 2

    listing = client.get("/api/v1/products/")
    assert listing.status_code == 200
    assert [i["name"] for i in listing.json()["items"]] == ["fits"]


def test_import_csv_skips_oversized_name(client):
    """The CSV path applies the same column limits."""
    content = b"name,stock\n" + b"n" * 256 + b",1\nShort,2\n"

    response = _upload(client, content)

    assert response.json()["imported"] == 1
    assert client.get("/api/v1/products/").json()["total"] == 1


def test_bulk_insert_out_of_range_stock_becomes_zero(client):
    """Stock beyond a 64-bit integer is treated as non-numeric."""
    response = client.post(
        "/api/v1/products/bulk",
        json=[{"name": "huge", "stock": 10 ** 30}, {"name": "tiny", "stock": "-" + "9" * 25}]
    )

    assert response.status_code == 200
    assert response.json()["imported"] == 2
    items = client.get("/api/v1/products/").json()["items"]
    assert [i["stock"] for i in items] == [0, 0]
