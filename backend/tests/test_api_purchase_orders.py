from decimal import Decimal


def _create_po(client, supplier_id, po_number="PO-API-1", lines=None):
    payload = {
        "po_number": po_number,
        "supplier_id": supplier_id,
        "priority": "high",
        "created_by": "buyer",
        "lines": lines
        or [{"product_sku": "GL-10", "product_name": "Clear 10mm", "qty_ordered": 10, "unit_price": "12.50"}],
    }
    r = client.post("/v1/purchase-orders", json=payload)
    assert r.status_code == 201, r.text
    return r.json()


def _advance(client, po_id, *statuses):
    for status in statuses:
        r = client.post(f"/v1/purchase-orders/{po_id}/transition", json={"to_status": status})
        assert r.status_code == 200, r.text
    return r.json()


def test_health(client):
    r = client.get("/v1/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_suppliers_roundtrip(client):
    r = client.post("/v1/suppliers", json={"name": "Pacific Frames", "country": "NZ"})
    assert r.status_code == 201
    assert client.post("/v1/suppliers", json={"name": "Pacific Frames"}).status_code == 409
    names = [s["name"] for s in client.get("/v1/suppliers").json()]
    assert names == ["Pacific Frames"]


def test_create_and_read_po(client, supplier):
    po = _create_po(client, supplier.id)

    assert po["status"] == "draft"
    assert po["priority"] == "high"
    assert Decimal(po["total_amount"]) == Decimal("125")
    assert po["approval_required"] is False
    assert po["next_valid_statuses"] == ["approved", "pending_approval"]
    assert po["lines"][0]["discrepancy"] == 10

    r = client.get(f"/v1/purchase-orders/{po['id']}")
    assert r.status_code == 200
    assert r.json()["po_number"] == "PO-API-1"

    listing = client.get("/v1/purchase-orders").json()
    assert [p["id"] for p in listing] == [po["id"]]


def test_duplicate_po_number_conflicts(client, supplier):
    _create_po(client, supplier.id)
    r = client.post(
        "/v1/purchase-orders",
        json={"po_number": "PO-API-1", "supplier_id": supplier.id, "lines": []},
    )
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "already_exists"


def test_unknown_po_is_404(client):
    assert client.get("/v1/purchase-orders/404").status_code == 404
    r = client.post("/v1/purchase-orders/404/transition", json={"to_status": "approved"})
    assert r.status_code == 404


def test_large_po_requires_approval(client, supplier):
    po = _create_po(
        client,
        supplier.id,
        lines=[{"product_sku": "GL-12", "product_name": "Low iron", "qty_ordered": 10, "unit_price": "250"}],
    )
    assert po["approval_required"] is True

    r = client.post(f"/v1/purchase-orders/{po['id']}/transition", json={"to_status": "approved"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "approval_required"

    r = client.post(f"/v1/purchase-orders/{po['id']}/submit", json={"actor": "buyer"})
    assert r.status_code == 200
    assert r.json()["status"] == "pending_approval"


def test_illegal_transition_is_409(client, supplier):
    po = _create_po(client, supplier.id)
    r = client.post(f"/v1/purchase-orders/{po['id']}/transition", json={"to_status": "completed"})
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "illegal_transition"


def test_unknown_status_value_is_422(client, supplier):
    po = _create_po(client, supplier.id)
    r = client.post(f"/v1/purchase-orders/{po['id']}/transition", json={"to_status": "shipped"})
    assert r.status_code == 422


def test_receiving_flow_with_discrepancy_gate(client, supplier):
    po = _create_po(client, supplier.id)
    po_id = po["id"]
    line_id = po["lines"][0]["id"]
    client.post(f"/v1/purchase-orders/{po_id}/submit")
    _advance(client, po_id, "sent_to_supplier", "supplier_confirmed")

    r = client.get(f"/v1/purchase-orders/{po_id}/next-statuses")
    assert r.json()["next_valid_statuses"] == ["fully_received", "partially_received"]

    preview = client.post(
        f"/v1/purchase-orders/{po_id}/receipts/preview",
        json={"lines": [{"line_id": line_id, "qty_to_receive": 6}]},
    ).json()
    assert preview["summary"]["items_with_discrepancies"] == 1
    assert preview["discrepancies"][0]["discrepancy"] == 4

    body = {
        "received_by": "warehouse",
        "delivery_condition": "PARTIAL",
        "lines": [{"line_id": line_id, "qty_to_receive": 6, "notes": "4 short"}],
    }
    r = client.post(f"/v1/purchase-orders/{po_id}/receipts", json=body)
    assert r.status_code == 200
    pending = r.json()
    assert pending["decision"] == "require_acknowledgement"
    assert pending["committed"] is False
    assert pending["target_status"] is None
    assert pending["status"] == "supplier_confirmed"

    r = client.post(f"/v1/purchase-orders/{po_id}/receipts", json={**body, "acknowledged": True})
    done = r.json()
    assert done["decision"] == "proceed"
    assert done["committed"] is True
    assert done["status"] == "partially_received"

    r = client.post(
        f"/v1/purchase-orders/{po_id}/receipts",
        json={"received_by": "warehouse", "lines": [{"line_id": line_id, "qty_to_receive": 4}]},
    )
    assert r.json()["status"] == "fully_received"
    assert client.get(f"/v1/purchase-orders/{po_id}").json()["needs_invoice"] is True

    r = client.post(f"/v1/purchase-orders/{po_id}/invoice", json={"actor": "accounts"})
    assert r.status_code == 200
    invoiced = r.json()
    assert invoiced["status"] == "invoiced"
    assert invoiced["dispatch_blocked"] is False
    assert invoiced["needs_invoice"] is False


def test_negative_quantity_is_400(client, supplier):
    po = _create_po(client, supplier.id)
    po_id, line_id = po["id"], po["lines"][0]["id"]
    client.post(f"/v1/purchase-orders/{po_id}/submit")
    _advance(client, po_id, "sent_to_supplier", "supplier_confirmed")

    r = client.post(
        f"/v1/purchase-orders/{po_id}/receipts",
        json={"received_by": "warehouse", "lines": [{"line_id": line_id, "qty_to_receive": -1}]},
    )
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "invalid"


def test_receipt_idempotency_key_header(client, supplier):
    po = _create_po(client, supplier.id)
    po_id, line_id = po["id"], po["lines"][0]["id"]
    client.post(f"/v1/purchase-orders/{po_id}/submit")
    _advance(client, po_id, "sent_to_supplier", "supplier_confirmed")

    body = {"received_by": "dock", "lines": [{"line_id": line_id, "qty_to_receive": 10}]}
    headers = {"Idempotency-Key": "truck-42"}
    first = client.post(f"/v1/purchase-orders/{po_id}/receipts", json=body, headers=headers).json()
    again = client.post(f"/v1/purchase-orders/{po_id}/receipts", json=body, headers=headers).json()

    assert first["committed"] is True
    assert again["committed"] is False
    assert again["goods_receipt_id"] == first["goods_receipt_id"]
    assert client.get(f"/v1/purchase-orders/{po_id}").json()["lines"][0]["qty_received"] == 10


def test_repeated_line_in_receipt_is_400(client, supplier):
    po = _create_po(client, supplier.id)
    po_id, line_id = po["id"], po["lines"][0]["id"]
    client.post(f"/v1/purchase-orders/{po_id}/submit")
    _advance(client, po_id, "sent_to_supplier", "supplier_confirmed")

    lines = [
        {"line_id": line_id, "qty_to_receive": 6},
        {"line_id": line_id, "qty_to_receive": 4},
    ]
    r = client.post(f"/v1/purchase-orders/{po_id}/receipts/preview", json={"lines": lines})
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "invalid"

    r = client.post(
        f"/v1/purchase-orders/{po_id}/receipts",
        json={"received_by": "warehouse", "acknowledged": True, "lines": lines},
    )
    assert r.status_code == 400
    po = client.get(f"/v1/purchase-orders/{po_id}").json()
    assert po["status"] == "supplier_confirmed"
    assert po["lines"][0]["qty_received"] == 0


def test_over_receipt_closed_then_invoiced(client, supplier):
    po = _create_po(client, supplier.id)
    po_id, line_id = po["id"], po["lines"][0]["id"]
    client.post(f"/v1/purchase-orders/{po_id}/submit")
    _advance(client, po_id, "sent_to_supplier", "supplier_confirmed")

    r = client.post(
        f"/v1/purchase-orders/{po_id}/receipts",
        json={
            "received_by": "warehouse",
            "acknowledged": True,
            "lines": [{"line_id": line_id, "qty_to_receive": 12}],
        },
    )
    assert r.json()["status"] == "partially_received"

    r = client.post(f"/v1/purchase-orders/{po_id}/receipts/close", json={"actor": "lead"})
    assert r.status_code == 200, r.text
    closed = r.json()
    assert closed["status"] == "fully_received"
    assert closed["needs_invoice"] is True
    assert closed["lines"][0]["discrepancy"] == 2

    # plus rien à clôturer
    r = client.post(f"/v1/purchase-orders/{po_id}/receipts/close", json={"actor": "lead"})
    assert r.status_code == 409

    r = client.post(f"/v1/purchase-orders/{po_id}/invoice", json={"actor": "accounts"})
    assert r.json()["status"] == "invoiced"
    _advance(client, po_id, "completed")
