"""
Tooling Workflow Dashboard — FastAPI backend.

HTTP surface over the workflow engine.  The acting identity comes from the
identity provider in front of this service as two headers:

  X-Role   Approver | NPD | Maintenance | Spares | Indentor   (required)
  X-User   user name recorded in the audit trail               (optional)

Workflow errors are returned as {"error": kind, "message": ...} with
NotFound → 404, Forbidden → 403, ValidationFailed → 422 and
InvalidState / InsufficientStock → 409.

Endpoints
---------
  GET  /api/health                              → liveness check
  GET  /api/pending                             → work waiting on the caller's role

  GET  /api/projects                            → list (?status= accepts any label or alias)
  POST /api/projects                            → create
  GET  /api/projects/{id}                       → one project
  PATCH /api/projects/{id}                      → edit
  POST /api/projects/{id}/complete              → mark Completed

  GET  /api/prs                                 → list (?status=, ?project_id=)
  POST /api/prs                                 → submit a PR
  GET  /api/prs/{id}                            → one PR with its quotations
  GET  /api/prs/{id}/actions                    → triggers open to the caller's role
  PATCH /api/prs/{id}                           → edit while awaiting approval
  POST /api/prs/{id}/approve | reject | send | award
  POST /api/prs/{id}/quotations                 → record a quotation
  GET  /api/prs/{id}/quotations/compare         → side-by-side comparison

  GET  /api/quotations/{id}                     → one quotation
  POST /api/quotations/{id}/evaluate | select | reject

  GET  /api/handovers                           → list (?status=)
  GET  /api/handovers/{id}                      → one handover
  GET  /api/handovers/{id}/actions              → triggers open to the caller's role
  POST /api/handovers/{id}/approve | reject
  GET  /api/handovers/{id}/export               → goods-receipt XML

  GET  /api/inventory                           → list (?status=)
  POST /api/inventory                           → record stock received outside a handover
  GET  /api/inventory/low-stock                 → Low / Out of Stock items
  GET  /api/inventory/reorder-suggestions       → suggested reorder quantities
  GET  /api/inventory/{id}                      → one item
  POST /api/inventory/{id}/adjust               → signed stock correction
  PUT  /api/inventory/{id}/min-stock            → set reorder threshold
  POST /api/inventory/{id}/reorder              → raise a reorder PR

  GET  /api/requests                            → list (?status=, ?requester=)
  POST /api/requests                            → raise a spares request
  GET  /api/requests/{id}                       → one request
  GET  /api/requests/{id}/actions               → triggers open to the caller's role
  POST /api/requests/{id}/fulfill | reject

  GET  /api/suppliers                           → list (?status=)
  POST /api/suppliers                           → create
  GET  /api/suppliers/{id}                      → one supplier
  PATCH /api/suppliers/{id}                     → edit contact details
  PUT  /api/suppliers/{id}/status | rating

  GET  /api/reports/stats | prs | inventory | projects | spend | throughput
  GET  /api/reports/spend.csv                   → spend by supplier as CSV
  GET  /api/history/{entity_id}                 → audit trail for one entity
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from config import Config
from models import Actor, PRStatus, Role
from workflow import Collection, SqliteStore, WorkflowEngine, WorkflowError, queries
from workflow.errors import (
    FORBIDDEN, INSUFFICIENT_STOCK, INVALID_STATE, NOT_FOUND, VALIDATION_FAILED,
)
from workflow.transitions import HANDOVER_MACHINE, PR_MACHINE, QUOTATION_MACHINE, REQUEST_MACHINE
from .models import (
    Comments, Fulfilment, InventoryItemCreate, MinStockUpdate, Notes, PRCreate, PRUpdate,
    ProjectCreate, ProjectUpdate, QuotationCreate, Reason, Remarks, ReorderCreate, RequestCreate,
    StockAdjustment, SupplierCreate, SupplierRating, SupplierStatusUpdate, SupplierUpdate,
)
from .services import build_handover_payload, render_handover_xml, spend_report_csv

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NOT_FOUND:          404,
    FORBIDDEN:          403,
    VALIDATION_FAILED:  422,
    INVALID_STATE:      409,
    INSUFFICIENT_STOCK: 409,
}

# ---------------------------------------------------------------------------
# Engine, opened on first request; tests swap it out through
# dependency_overrides
# ---------------------------------------------------------------------------
_engine: Optional[WorkflowEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> WorkflowEngine:
    global _engine
    with _engine_lock:
        if _engine is None:
            config = Config()
            config.ensure_output_dir()
            _engine = WorkflowEngine(SqliteStore(config.db_path), config)
    return _engine


def get_actor(
    x_role: Optional[str] = Header(default=None),
    x_user: Optional[str] = Header(default=None),
) -> Actor:
    try:
        role = Role(x_role)
    except ValueError:
        allowed = ", ".join(r.value for r in Role)
        raise HTTPException(status_code=401, detail=f"X-Role header must be one of: {allowed}")
    return Actor(user=(x_user or "").strip() or "anonymous", role=role)


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Tooling Workflow Dashboard", docs_url=None, redoc_url=None)


@app.exception_handler(WorkflowError)
def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status_code = STATUS_CODES.get(exc.kind, 400)
    logger.debug("%s %s -> %d %s: %s", request.method, request.url.path, status_code, exc.kind, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ── Health / pending ─────────────────────────────────────────────────────────

@app.get("/api/health")
def health(engine: WorkflowEngine = Depends(get_engine)):
    db_path = getattr(engine.store, "db_path", None)
    return {
        "status":    "ok",
        "store":     type(engine.store).__name__,
        "db_path":   str(db_path) if db_path else None,
        "db_exists": db_path.exists() if db_path else None,
    }


@app.get("/api/pending")
def pending(actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
    requester = actor.user if actor.role == Role.INDENTOR else None
    return {"role": actor.role.value, "counts": queries.pending_counts(engine.store, actor.role, requester)}


# ── Projects ─────────────────────────────────────────────────────────────────

@app.get("/api/projects")
def list_projects(
    status: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.list(Collection.PROJECTS, status or None)


@app.post("/api/projects", status_code=201)
def create_project(body: ProjectCreate, actor: Actor = Depends(get_actor),
                   engine: WorkflowEngine = Depends(get_engine)):
    return engine.create_project(actor, **body.model_dump())


@app.get("/api/projects/{project_id}")
def get_project(project_id: str, actor: Actor = Depends(get_actor),
                engine: WorkflowEngine = Depends(get_engine)):
    return engine.get(Collection.PROJECTS, project_id)


@app.patch("/api/projects/{project_id}")
def update_project(project_id: str, body: ProjectUpdate, actor: Actor = Depends(get_actor),
                   engine: WorkflowEngine = Depends(get_engine)):
    return engine.update_project(actor, project_id, **body.model_dump(exclude_unset=True))


@app.post("/api/projects/{project_id}/complete")
def complete_project(project_id: str, actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    return engine.complete_project(actor, project_id)


# ── Purchase requisitions ────────────────────────────────────────────────────

@app.get("/api/prs")
def list_prs(
    status: Optional[str] = Query(default=None),
    project_id: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    prs = engine.list(Collection.PRS, status or None)
    if project_id:
        prs = [pr for pr in prs if pr.project_id == project_id]
    return prs


@app.post("/api/prs", status_code=201)
def create_pr(body: PRCreate, actor: Actor = Depends(get_actor),
              engine: WorkflowEngine = Depends(get_engine)):
    return engine.create_pr(
        actor,
        project_id=body.project_id,
        items=body.items,
        candidate_suppliers=body.candidate_suppliers,
        pr_type=body.pr_type,
        critical_spares=body.critical_spares,
        mod_ref_reason=body.mod_ref_reason,
    )


@app.get("/api/prs/{pr_id}")
def get_pr(pr_id: str, actor: Actor = Depends(get_actor),
           engine: WorkflowEngine = Depends(get_engine)):
    return engine.get(Collection.PRS, pr_id)


@app.get("/api/prs/{pr_id}/actions")
def pr_actions(pr_id: str, actor: Actor = Depends(get_actor),
               engine: WorkflowEngine = Depends(get_engine)):
    """What the caller's role can do next with this PR and each of its quotations."""
    pr = engine.get(Collection.PRS, pr_id)
    quotations = {}
    for q in pr.quotations:
        triggers = []
        # quotations only move while the PR is collecting them; selection needs it sent
        if pr.status in (PRStatus.APPROVED, PRStatus.SENT_TO_SUPPLIER):
            triggers = [
                t for t in QUOTATION_MACHINE.allowed_triggers(actor.role, q.status)
                if t != "select" or pr.status == PRStatus.SENT_TO_SUPPLIER
            ]
        quotations[q.id] = triggers
    return {"pr": PR_MACHINE.allowed_triggers(actor.role, pr.status), "quotations": quotations}


@app.patch("/api/prs/{pr_id}")
def update_pr(pr_id: str, body: PRUpdate, actor: Actor = Depends(get_actor),
              engine: WorkflowEngine = Depends(get_engine)):
    return engine.update_pr(actor, pr_id, **body.model_dump(exclude_unset=True))


@app.post("/api/prs/{pr_id}/approve")
def approve_pr(pr_id: str, body: Comments = Comments(), actor: Actor = Depends(get_actor),
               engine: WorkflowEngine = Depends(get_engine)):
    return engine.approve_pr(actor, pr_id, body.comments)


@app.post("/api/prs/{pr_id}/reject")
def reject_pr(pr_id: str, body: Comments = Comments(), actor: Actor = Depends(get_actor),
              engine: WorkflowEngine = Depends(get_engine)):
    return engine.reject_pr(actor, pr_id, body.comments)


@app.post("/api/prs/{pr_id}/send")
def send_to_supplier(pr_id: str, actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    return engine.send_to_supplier(actor, pr_id)


@app.post("/api/prs/{pr_id}/award")
def award_pr(pr_id: str, actor: Actor = Depends(get_actor),
             engine: WorkflowEngine = Depends(get_engine)):
    return engine.award_pr(actor, pr_id)


@app.post("/api/prs/{pr_id}/quotations", status_code=201)
def submit_quotation(pr_id: str, body: QuotationCreate, actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    return engine.submit_quotation(actor, pr_id, **body.model_dump(exclude={"items"}), items=body.items)


@app.get("/api/prs/{pr_id}/quotations/compare")
def compare_quotations(pr_id: str, actor: Actor = Depends(get_actor),
                       engine: WorkflowEngine = Depends(get_engine)):
    return queries.compare_quotations(engine.store, pr_id)


# ── Quotations ───────────────────────────────────────────────────────────────

@app.get("/api/quotations/{quotation_id}")
def get_quotation(quotation_id: str, actor: Actor = Depends(get_actor),
                  engine: WorkflowEngine = Depends(get_engine)):
    return engine.get_quotation(quotation_id)


@app.post("/api/quotations/{quotation_id}/evaluate")
def evaluate_quotation(quotation_id: str, body: Notes = Notes(), actor: Actor = Depends(get_actor),
                       engine: WorkflowEngine = Depends(get_engine)):
    return engine.evaluate_quotation(actor, quotation_id, body.notes)


@app.post("/api/quotations/{quotation_id}/select")
def select_quotation(quotation_id: str, actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    return engine.select_quotation(actor, quotation_id)


@app.post("/api/quotations/{quotation_id}/reject")
def reject_quotation(quotation_id: str, body: Reason = Reason(), actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    return engine.reject_quotation(actor, quotation_id, body.reason)


# ── Handovers ────────────────────────────────────────────────────────────────

@app.get("/api/handovers")
def list_handovers(
    status: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.list(Collection.HANDOVERS, status or None)


@app.get("/api/handovers/{handover_id}")
def get_handover(handover_id: str, actor: Actor = Depends(get_actor),
                 engine: WorkflowEngine = Depends(get_engine)):
    return engine.get(Collection.HANDOVERS, handover_id)


@app.get("/api/handovers/{handover_id}/actions")
def handover_actions(handover_id: str, actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    handover = engine.get(Collection.HANDOVERS, handover_id)
    return {"handover": HANDOVER_MACHINE.allowed_triggers(actor.role, handover.status)}


@app.post("/api/handovers/{handover_id}/approve")
def approve_handover(handover_id: str, body: Remarks = Remarks(), actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    return engine.approve_handover(actor, handover_id, body.remarks)


@app.post("/api/handovers/{handover_id}/reject")
def reject_handover(handover_id: str, body: Remarks = Remarks(), actor: Actor = Depends(get_actor),
                    engine: WorkflowEngine = Depends(get_engine)):
    return engine.reject_handover(actor, handover_id, body.remarks)


@app.get("/api/handovers/{handover_id}/export")
def export_handover(handover_id: str, actor: Actor = Depends(get_actor),
                    engine: WorkflowEngine = Depends(get_engine)):
    """
    Goods-receipt XML for one handover, rendered with the operator template
    (config/handover_export.xml.j2) when present, else the built-in default.
    """
    handover = engine.get(Collection.HANDOVERS, handover_id)
    pr = engine.store.get(Collection.PRS, handover.pr_id)
    supplier = (
        engine.store.get(Collection.SUPPLIERS, pr.awarded_supplier_id)
        if pr and pr.awarded_supplier_id else None
    )
    payload = build_handover_payload(
        handover,
        exported_at=datetime.now(timezone.utc).isoformat(),
        project=engine.store.get(Collection.PROJECTS, handover.project_id),
        pr=pr,
        supplier=supplier,
    )
    xml = render_handover_xml(payload, engine.config.handover_template_path)
    logger.info("Exported handover %s for %s", handover_id, actor.user)
    return Response(
        content=xml,
        media_type="application/xml",
        headers={"Content-Disposition": f'attachment; filename="{handover_id}.xml"'},
    )


# ── Inventory ────────────────────────────────────────────────────────────────

@app.get("/api/inventory")
def list_inventory(
    status: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.list(Collection.INVENTORY, status or None)


@app.post("/api/inventory", status_code=201)
def create_inventory_item(body: InventoryItemCreate, actor: Actor = Depends(get_actor),
                          engine: WorkflowEngine = Depends(get_engine)):
    return engine.create_inventory_item(actor, **body.model_dump())


@app.get("/api/inventory/low-stock")
def low_stock(actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
    return queries.low_stock_items(engine.store)


@app.get("/api/inventory/reorder-suggestions")
def reorder_suggestions(actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
    return queries.reorder_suggestions(engine.store)


@app.get("/api/inventory/{item_id}")
def get_inventory_item(item_id: str, actor: Actor = Depends(get_actor),
                       engine: WorkflowEngine = Depends(get_engine)):
    return engine.get(Collection.INVENTORY, item_id)


@app.post("/api/inventory/{item_id}/adjust")
def adjust_stock(item_id: str, body: StockAdjustment, actor: Actor = Depends(get_actor),
                 engine: WorkflowEngine = Depends(get_engine)):
    return engine.adjust_stock(actor, item_id, body.delta, body.reason)


@app.put("/api/inventory/{item_id}/min-stock")
def set_min_stock(item_id: str, body: MinStockUpdate, actor: Actor = Depends(get_actor),
                  engine: WorkflowEngine = Depends(get_engine)):
    return engine.set_min_stock_level(actor, item_id, body.min_stock_level)


@app.post("/api/inventory/{item_id}/reorder", status_code=201)
def raise_reorder_pr(item_id: str, body: ReorderCreate, actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    return engine.raise_reorder_pr(actor, item_id, **body.model_dump())


# ── Spares requests ──────────────────────────────────────────────────────────

@app.get("/api/requests")
def list_requests(
    status: Optional[str] = Query(default=None),
    requester: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    requests = engine.list(Collection.SPARES_REQUESTS, status or None)
    if requester:
        requests = [r for r in requests if r.requester == requester]
    return requests


@app.post("/api/requests", status_code=201)
def create_request(body: RequestCreate, actor: Actor = Depends(get_actor),
                   engine: WorkflowEngine = Depends(get_engine)):
    return engine.create_request(actor, **body.model_dump())


@app.get("/api/requests/{request_id}")
def get_request(request_id: str, actor: Actor = Depends(get_actor),
                engine: WorkflowEngine = Depends(get_engine)):
    return engine.get(Collection.SPARES_REQUESTS, request_id)


@app.get("/api/requests/{request_id}/actions")
def request_actions(request_id: str, actor: Actor = Depends(get_actor),
                    engine: WorkflowEngine = Depends(get_engine)):
    request = engine.get(Collection.SPARES_REQUESTS, request_id)
    return {"request": REQUEST_MACHINE.allowed_triggers(actor.role, request.status)}


@app.post("/api/requests/{request_id}/fulfill")
def fulfill_request(request_id: str, body: Fulfilment = Fulfilment(), actor: Actor = Depends(get_actor),
                    engine: WorkflowEngine = Depends(get_engine)):
    return engine.fulfill_request(actor, request_id, body.quantity)


@app.post("/api/requests/{request_id}/reject")
def reject_request(request_id: str, body: Reason = Reason(), actor: Actor = Depends(get_actor),
                   engine: WorkflowEngine = Depends(get_engine)):
    return engine.reject_request(actor, request_id, body.reason)


# ── Suppliers ────────────────────────────────────────────────────────────────

@app.get("/api/suppliers")
def list_suppliers(
    status: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return engine.list(Collection.SUPPLIERS, status or None)


@app.post("/api/suppliers", status_code=201)
def create_supplier(body: SupplierCreate, actor: Actor = Depends(get_actor),
                    engine: WorkflowEngine = Depends(get_engine)):
    return engine.create_supplier(actor, **body.model_dump())


@app.get("/api/suppliers/{supplier_id}")
def get_supplier(supplier_id: str, actor: Actor = Depends(get_actor),
                 engine: WorkflowEngine = Depends(get_engine)):
    return engine.get(Collection.SUPPLIERS, supplier_id)


@app.patch("/api/suppliers/{supplier_id}")
def update_supplier(supplier_id: str, body: SupplierUpdate, actor: Actor = Depends(get_actor),
                    engine: WorkflowEngine = Depends(get_engine)):
    return engine.update_supplier(actor, supplier_id, **body.model_dump(exclude_unset=True))


@app.put("/api/suppliers/{supplier_id}/status")
def set_supplier_status(supplier_id: str, body: SupplierStatusUpdate, actor: Actor = Depends(get_actor),
                        engine: WorkflowEngine = Depends(get_engine)):
    return engine.set_supplier_status(actor, supplier_id, body.status)


@app.put("/api/suppliers/{supplier_id}/rating")
def rate_supplier(supplier_id: str, body: SupplierRating, actor: Actor = Depends(get_actor),
                  engine: WorkflowEngine = Depends(get_engine)):
    return engine.rate_supplier(actor, supplier_id, body.rating)


# ── Reports ──────────────────────────────────────────────────────────────────

@app.get("/api/reports/stats")
def report_stats(year: Optional[int] = Query(default=None), actor: Actor = Depends(get_actor),
                 engine: WorkflowEngine = Depends(get_engine)):
    return queries.dashboard_stats(engine.store, year)


@app.get("/api/reports/prs")
def report_prs(year: Optional[int] = Query(default=None), actor: Actor = Depends(get_actor),
               engine: WorkflowEngine = Depends(get_engine)):
    return queries.pr_summary(engine.store, year)


@app.get("/api/reports/inventory")
def report_inventory(actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
    return queries.inventory_summary(engine.store)


@app.get("/api/reports/projects")
def report_projects(actor: Actor = Depends(get_actor), engine: WorkflowEngine = Depends(get_engine)):
    return queries.project_summary(engine.store)


@app.get("/api/reports/spend")
def report_spend(year: Optional[int] = Query(default=None), actor: Actor = Depends(get_actor),
                 engine: WorkflowEngine = Depends(get_engine)):
    return queries.spend_by_supplier(engine.store, year)


@app.get("/api/reports/spend.csv")
def report_spend_csv(year: Optional[int] = Query(default=None), actor: Actor = Depends(get_actor),
                     engine: WorkflowEngine = Depends(get_engine)):
    filename = f"spend-{year}.csv" if year else "spend.csv"
    return Response(
        content=spend_report_csv(queries.spend_by_supplier(engine.store, year)),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/reports/throughput")
def report_throughput(
    period: str = Query(default=queries.PERIOD_MONTH),
    year: Optional[int] = Query(default=None),
    actor: Actor = Depends(get_actor),
    engine: WorkflowEngine = Depends(get_engine),
):
    return queries.pr_throughput(engine.store, period, year)


@app.get("/api/history/{entity_id}")
def history(entity_id: str, actor: Actor = Depends(get_actor),
            engine: WorkflowEngine = Depends(get_engine)):
    return engine.history(entity_id)
