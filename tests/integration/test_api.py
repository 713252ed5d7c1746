"""
API tests for the dashboard backend.
"""
import pytest
from fastapi.testclient import TestClient

from dashboard.app import app, get_engine

APPROVER = {"X-Role": "Approver", "X-User": "asha"}
NPD = {"X-Role": "NPD", "X-User": "nikhil"}
MAINTENANCE = {"X-Role": "Maintenance", "X-User": "mohan"}
SPARES = {"X-Role": "Spares", "X-User": "sara"}
INDENTOR = {"X-Role": "Indentor", "X-User": "ravi"}


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.mark.api
class TestIdentity:

    def test_health_needs_no_identity(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["store"] == "InMemoryStore"

    def test_missing_role(self, client):
        assert client.get("/api/projects").status_code == 401

    def test_unknown_role(self, client):
        assert client.get("/api/projects", headers={"X-Role": "Admin"}).status_code == 401

    def test_user_recorded_in_history(self, client, engine):
        created = client.post("/api/projects", headers=APPROVER, json={
            "customer_po": "CPO-77", "part_number": "PN-77", "tool_number": "TL-77", "price": 1200,
        })
        assert created.status_code == 201
        project_id = created.json()["id"]

        history = client.get(f"/api/history/{project_id}", headers=APPROVER).json()
        assert [(e["action"], e["actor"], e["role"]) for e in history] == [("created", "asha", "Approver")]


@pytest.mark.api
class TestErrorMapping:

    def test_forbidden(self, client):
        response = client.post("/api/projects", headers=NPD, json={
            "customer_po": "CPO-77", "part_number": "PN-77", "tool_number": "TL-77", "price": 1200,
        })
        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"

    def test_not_found(self, client):
        response = client.get("/api/prs/PR-2024-404", headers=NPD)
        assert response.status_code == 404
        assert response.json() == {
            "error": "NotFound", "message": "PR PR-2024-404 not found", "entity_id": "PR-2024-404",
        }

    def test_invalid_state(self, client, pr):
        assert client.post(f"/api/prs/{pr.id}/approve", headers=APPROVER).status_code == 200
        response = client.post(f"/api/prs/{pr.id}/approve", headers=APPROVER)
        assert response.status_code == 409
        assert response.json()["error"] == "InvalidState"

    def test_validation_failed(self, client, quoted_pr):
        client.post("/api/quotations/QT-2024-001/reject", headers=NPD, json={"reason": "Expired"})
        response = client.post(f"/api/prs/{quoted_pr.id}/quotations", headers=NPD, json={
            "supplier": "ACM",
            "price": 99,
            "items": [
                {"item_id": "PR-2024-001-01", "unit_price": 30, "quantity": 2},
                {"item_id": "PR-2024-001-02", "unit_price": 40, "quantity": 1},
            ],
        })
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationFailed"

    def test_insufficient_stock(self, client, engine, indentor, stocked_item):
        request = engine.create_request(indentor, "Punch", stocked_item.part_number,
                                        stocked_item.tool_number, 3)
        client.post(f"/api/inventory/{stocked_item.id}/adjust", headers=SPARES, json={"delta": -2})
        response = client.post(f"/api/requests/{request.id}/fulfill", headers=SPARES)
        assert response.status_code == 409
        assert response.json()["error"] == "InsufficientStock"


@pytest.mark.api
class TestWorkflowEndpoints:

    def test_procurement_flow(self, client, project, suppliers):
        pr = client.post("/api/prs", headers=NPD, json={
            "project_id": project.id,
            "items": [{"name": "Punch", "quantity": 2, "unit_price": 30}],
            "candidate_suppliers": ["ACM", "BPW"],
            "critical_spares": [{"item_id": "PR-2024-001-01", "quantity": 1}],
        })
        assert pr.status_code == 201
        pr_id = pr.json()["id"]
        assert pr.json()["status"] == "Submitted for Approval"

        assert client.post(f"/api/prs/{pr_id}/approve", headers=APPROVER,
                           json={"comments": "OK"}).json()["status"] == "Approved"
        for supplier, unit_price in (("ACM", 30), ("Beta Precision Works", 28)):
            quoted = client.post(f"/api/prs/{pr_id}/quotations", headers=NPD, json={
                "supplier": supplier,
                "items": [{"item_id": "PR-2024-001-01", "unit_price": unit_price, "quantity": 2}],
            })
            assert quoted.status_code == 201
        assert client.post(f"/api/prs/{pr_id}/send", headers=NPD).json()["status"] == "Sent To Supplier"

        comparison = client.get(f"/api/prs/{pr_id}/quotations/compare", headers=NPD).json()
        assert comparison["lowest_price"]["id"] == "QT-2024-002"

        selected = client.post("/api/quotations/QT-2024-002/select", headers=APPROVER).json()
        assert [q["status"] for q in selected["quotations"]] == ["Evaluated", "Selected"]

        award = client.post(f"/api/prs/{pr_id}/award", headers=APPROVER).json()
        assert award["pr"]["status"] == "Awarded"
        assert award["supplier"]["code"] == "BPW"
        handover_id = award["handover"]["id"]

        pending = client.get("/api/pending", headers=MAINTENANCE).json()
        assert pending == {"role": "Maintenance", "counts": {"handovers_pending_inspection": 1}}

        received = client.post(f"/api/handovers/{handover_id}/approve", headers=MAINTENANCE,
                               json={"remarks": "OK"}).json()
        assert received["handover"]["status"] == "Approved"
        assert received["inventory_items"][0]["status"] == "In Stock"

    def test_handover_export(self, client, awarded):
        response = client.get(f"/api/handovers/{awarded.handover.id}/export", headers=MAINTENANCE)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert 'filename="HO-2024-001.xml"' in response.headers["content-disposition"]
        assert "<HandoverId>HO-2024-001</HandoverId>" in response.text
        assert "<Code>ACM</Code>" in response.text

    def test_spares_request_flow(self, client, stocked_item):
        created = client.post("/api/requests", headers=INDENTOR, json={
            "item_name": "Punch", "part_number": stocked_item.part_number,
            "tool_number": stocked_item.tool_number, "quantity": 3,
        })
        assert created.status_code == 201
        request_id = created.json()["id"]

        mine = client.get("/api/requests", headers=INDENTOR, params={"requester": "ravi"}).json()
        assert [r["id"] for r in mine] == [request_id]

        outcome = client.post(f"/api/requests/{request_id}/fulfill", headers=SPARES).json()
        assert outcome["request"]["status"] == "Fulfilled"
        assert outcome["inventory_item"]["status"] == "Out of Stock"
        assert outcome["reorder_suggestion"]["suggested_quantity"] == 5

        low = client.get("/api/inventory/low-stock", headers=SPARES).json()
        assert [i["id"] for i in low] == [stocked_item.id]

    def test_available_actions(self, client, engine, indentor, awarded, stocked_item):
        pr_id = awarded.pr.id
        assert client.get(f"/api/prs/{pr_id}/actions", headers=APPROVER).json() == {
            "pr": [], "quotations": {"QT-2024-001": [], "QT-2024-002": []},
        }
        handover_id = awarded.handover.id
        assert client.get(f"/api/handovers/{handover_id}/actions", headers=MAINTENANCE).json() == {
            "handover": ["approve", "reject"],
        }
        assert client.get(f"/api/handovers/{handover_id}/actions", headers=SPARES).json() == {"handover": []}

        request = engine.create_request(indentor, "Punch", stocked_item.part_number, stocked_item.tool_number, 1)
        assert client.get(f"/api/requests/{request.id}/actions", headers=SPARES).json() == {
            "request": ["fulfill", "reject"],
        }
        assert client.get(f"/api/requests/{request.id}/actions", headers=INDENTOR).json() == {"request": []}
        assert client.get("/api/prs/PR-2024-404/actions", headers=NPD).status_code == 404

    def test_actions_on_open_pr(self, client, quoted_pr):
        assert client.get(f"/api/prs/{quoted_pr.id}/actions", headers=NPD).json() == {
            "pr": ["award"],
            "quotations": {"QT-2024-001": ["evaluate", "select", "reject"],
                           "QT-2024-002": ["evaluate", "select", "reject"]},
        }

    def test_create_inventory_item(self, client, stocked_item):
        body = {"name": "Guide Pillar", "part_number": stocked_item.part_number,
                "tool_number": stocked_item.tool_number, "stock_level": 6, "min_stock_level": 2}
        created = client.post("/api/inventory", headers=SPARES, json=body)
        assert created.status_code == 201
        assert created.json()["id"] == "INV-2024-002"
        assert created.json()["status"] == "In Stock"

        duplicate = client.post("/api/inventory", headers=SPARES, json={**body, "name": "Punch"})
        assert duplicate.status_code == 409
        assert duplicate.json()["entity_id"] == stocked_item.id
        assert client.post("/api/inventory", headers=INDENTOR, json=body).status_code == 403
        assert client.post("/api/inventory", headers=SPARES, json={**body, "stock_level": -1}).status_code == 422

    def test_status_filter_accepts_aliases(self, client, pr):
        for label in ("Submitted for Approval", "submitted", "pending approval"):
            prs = client.get("/api/prs", headers=NPD, params={"status": label}).json()
            assert [p["id"] for p in prs] == [pr.id], label
        assert client.get("/api/prs", headers=NPD, params={"status": "approved"}).json() == []

        response = client.get("/api/prs", headers=NPD, params={"status": "Dormant"})
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationFailed"

    def test_inventory_status_filter(self, client, stocked_item):
        assert [i["id"] for i in client.get("/api/inventory", headers=SPARES,
                                            params={"status": "Low Stock"}).json()] == [stocked_item.id]
        assert client.get("/api/inventory", headers=SPARES, params={"status": "In Stock"}).json() == []

    def test_supplier_endpoints(self, client, suppliers):
        beta = suppliers[1]
        assert client.put(f"/api/suppliers/{beta.id}/status", headers=NPD,
                          json={"status": "Inactive"}).json()["status"] == "Inactive"
        assert client.put(f"/api/suppliers/{beta.id}/rating", headers=NPD,
                          json={"rating": 4.2}).json()["rating"] == 4.2
        assert [s["code"] for s in client.get("/api/suppliers", headers=NPD,
                                              params={"status": "Active"}).json()] == ["ACM"]
        response = client.patch(f"/api/suppliers/{beta.id}", headers=APPROVER, json={"phone": "+91 80 5550 2000"})
        assert response.json()["phone"] == "+91 80 5550 2000"


@pytest.mark.api
class TestReports:

    def test_spend_csv(self, client, awarded):
        response = client.get("/api/reports/spend.csv", headers=APPROVER, params={"year": 2024})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="spend-2024.csv"' in response.headers["content-disposition"]
        assert response.text.splitlines() == [
            "supplier_id,supplier_name,orders,total_spend",
            "SUP-2024-001,Acme Tooling Pvt Ltd,1,100.00",
        ]

    def test_throughput(self, client, awarded):
        rows = client.get("/api/reports/throughput", headers=APPROVER, params={"period": "year"}).json()
        assert rows == [{"period": "2024", "submitted": 1, "approved": 1, "awarded": 1, "rejected": 0}]
        assert client.get("/api/reports/throughput", headers=APPROVER,
                          params={"period": "fortnight"}).status_code == 422

    def test_stats(self, client, awarded):
        stats = client.get("/api/reports/stats", headers=APPROVER).json()
        assert stats["prs"] == {"Awarded": 1}
        assert stats["handovers"] == {"Pending Inspection": 1}
