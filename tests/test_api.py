import tempfile
import unittest
from unittest import mock

from fastapi.testclient import TestClient
from sqlmodel import Session

from retail_pos import config
from retail_pos.auth import create_token
from retail_pos.db import get_session
from retail_pos.main import app
from tests.support import memory_engine


class ApiTest(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()

        def override():
            with Session(self.engine) as s:
                yield s

        app.dependency_overrides[get_session] = override
        self.client = TestClient(app, cookies={"token": create_token("admin", "ADMIN")})

    def tearDown(self):
        app.dependency_overrides.clear()

    def make_product(self, **kw):
        body = dict(name="Rice 1kg", category="grocery", price=100.0, barcode="8901234567892", hsn="10063090", cgst=9, sgst=9)
        body.update(kw)
        r = self.client.post("/products", json=body)
        self.assertEqual(r.status_code, 201, r.text)
        return r.json()

    def stock(self, product_id, location, qty, batch_id):
        r = self.client.post("/inventory", json={"product_id": product_id, "quantity": qty, "location": location, "batch_id": batch_id})
        self.assertEqual(r.status_code, 201, r.text)
        return r.json()

    def test_requires_login(self):
        anon = TestClient(app)
        self.assertEqual(anon.get("/products").status_code, 401)

    def test_role_guard(self):
        cashier = TestClient(app, cookies={"token": create_token("cashier", "BILLING")})
        r = cashier.post("/products", json={"name": "X", "price": 1, "barcode": "1"})
        self.assertEqual(r.status_code, 403)

    def test_checkout_flow(self):
        p = self.make_product()
        self.stock(p["id"], "A", 3, "LOT-A")
        self.stock(p["id"], "B", 5, "LOT-B")

        r = self.client.post(
            "/bills",
            json={
                "items": [{"product_id": p["id"], "quantity": 4}, {"product_id": p["id"], "quantity": 2}],
                "payment_method": "cash",
                "customer": {"name": "Asha"},
            },
        )
        self.assertEqual(r.status_code, 201, r.text)
        body = r.json()
        self.assertEqual(body["bill"]["total"], 708.0)
        self.assertEqual(len(body["lines"]), 1)
        self.assertEqual(body["lines"][0]["quantity"], 6)
        self.assertEqual(sum(a["quantity"] for a in body["allocations"]), 6)

        inv = self.client.get("/inventory", params={"product_id": p["id"]}).json()
        self.assertEqual(sum(b["quantity"] for b in inv), 2)
        self.assertEqual(self.client.get(f"/products/{p['id']}/availability").json()["available"], 2)

        bill_id = body["bill"]["id"]
        self.assertEqual(self.client.get("/bills").json()[0]["id"], bill_id)
        html = self.client.get(f"/bills/{bill_id}/receipt")
        self.assertEqual(html.status_code, 200)
        self.assertIn(body["bill"]["bill_no"], html.text)
        self.assertIn("Customer: Asha", self.client.get(f"/bills/{bill_id}/receipt.txt").text)

        with tempfile.TemporaryDirectory() as tmp, mock.patch.object(config, "RECEIPT_DIR", tmp):
            pdf = self.client.get(f"/bills/{bill_id}/pdf")
            self.assertEqual(pdf.status_code, 200)
            self.assertTrue(pdf.content.startswith(b"%PDF"))

    def test_insufficient_stock_is_409_and_changes_nothing(self):
        p = self.make_product()
        self.stock(p["id"], "A", 3, "LOT-A")
        self.stock(p["id"], "B", 5, "LOT-B")

        r = self.client.post("/bills", json={"items": [{"product_id": p["id"], "quantity": 9}], "payment_method": "cash"})
        self.assertEqual(r.status_code, 409)
        self.assertEqual((r.json()["product_id"], r.json()["shortfall"]), (p["id"], 1))

        inv = self.client.get("/inventory", params={"product_id": p["id"]}).json()
        self.assertEqual(sorted(b["quantity"] for b in inv), [3, 5])
        self.assertEqual(self.client.get("/bills").json(), [])

    def test_validation_errors_are_400(self):
        self.assertEqual(self.client.post("/products", json={"name": "X", "price": 0, "barcode": "1"}).status_code, 400)
        self.make_product()
        self.assertEqual(self.make_product_status(barcode="8901234567892"), 400)
        r = self.client.post("/bills", json={"items": [], "payment_method": "cash"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(self.client.get("/bills", params={"from_date": "June"}).status_code, 400)

    def make_product_status(self, **kw):
        body = dict(name="Dup", price=10.0, barcode="x")
        body.update(kw)
        return self.client.post("/products", json=body).status_code

    def test_not_found_is_404(self):
        self.assertEqual(self.client.get("/bills/123").status_code, 404)
        self.assertEqual(self.client.put("/products/5", json={"price": 3}).status_code, 404)

    def test_adjust_and_alerts(self):
        p = self.make_product()
        self.stock(p["id"], "Shelf A-1", 8, "LOT-1")

        r = self.client.post("/inventory/adjust", data={"product_id": p["id"], "location": "Shelf A-1", "batch_id": "LOT-1", "delta": -3})
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["quantity"], 5)
        self.assertTrue(r.json()["is_low_stock"])

        alerts = self.client.get("/inventory/alerts").json()
        self.assertEqual([b["batch_id"] for b in alerts["low_stock"]], ["LOT-1"])

        r = self.client.post("/inventory/adjust", data={"product_id": p["id"], "location": "Shelf A-1", "batch_id": "LOT-1", "delta": -6})
        self.assertEqual(r.status_code, 409)

    def test_settings_and_upi_qr(self):
        p = self.make_product()
        self.stock(p["id"], "A", 5, "LOT-A")
        bill = self.client.post("/bills", json={"items": [{"product_id": p["id"], "quantity": 1}], "payment_method": "upi"}).json()["bill"]

        # default store has no UPI id yet
        self.assertEqual(self.client.get(f"/bills/{bill['id']}/upi-qr").status_code, 400)

        self.assertEqual(self.client.put("/settings", json={"upi_id": "bad id"}).status_code, 400)
        r = self.client.put("/settings", json={"upi_id": "store@upi", "name": "Corner Shop"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(self.client.get("/settings").json()["upi_id"], "store@upi")

        qr = self.client.get(f"/bills/{bill['id']}/upi-qr")
        self.assertEqual(qr.status_code, 200)
        self.assertEqual(qr.headers["content-type"], "image/png")

        url = self.client.get("/payments/upi", params={"amount": 118}).json()["url"]
        self.assertEqual(url, "upi://pay?pa=store@upi&pn=Corner%20Shop&am=118.00&cu=INR")

    def test_narrow_text_receipt_and_bad_logo(self):
        p = self.make_product()
        self.stock(p["id"], "A", 5, "LOT-A")
        bill = self.client.post("/bills", json={"items": [{"product_id": p["id"], "quantity": 1}], "payment_method": "cash"}).json()["bill"]

        r = self.client.get(f"/bills/{bill['id']}/receipt.txt", params={"columns": 20})
        self.assertEqual(r.status_code, 200)
        self.assertIn(bill["bill_no"], r.text)

        self.assertEqual(self.client.put("/settings", json={"logo": "data:image/png;base64,AAAA"}).status_code, 400)
        with tempfile.TemporaryDirectory() as tmp, mock.patch.object(config, "RECEIPT_DIR", tmp):
            self.assertEqual(self.client.get(f"/bills/{bill['id']}/pdf").status_code, 200)

    def test_expired_lot_is_listed_and_sold_first(self):
        p = self.make_product()
        r = self.client.post(
            "/inventory",
            json={"product_id": p["id"], "quantity": 3, "location": "A", "batch_id": "OLD", "expiry_date": "2000-01-01"},
        )
        self.assertEqual(r.json()["expiry_status"], "expired")
        self.stock(p["id"], "B", 5, "NEW")

        self.assertEqual(len(self.client.get("/inventory", params={"product_id": p["id"]}).json()), 2)
        r = self.client.post("/bills", json={"items": [{"product_id": p["id"], "quantity": 6}], "payment_method": "cash"})
        self.assertEqual(r.status_code, 201, r.text)
        self.assertEqual([a["batch_id"] for a in r.json()["allocations"]], ["OLD", "NEW"])

    def test_dashboard(self):
        out = self.client.get("/dashboard").json()
        self.assertEqual(out["bill_count"], 0)
        self.assertEqual(len(out["last_7_days"]), 7)


if __name__ == "__main__":
    unittest.main()
