import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_month_records, format_cents, parse_entries_csv
from database import SessionLocal
from periods import InvalidMonthKey, MonthKey, parse_month_key
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    CategoryIn,
    IngestTransactionIn,
    MonthBudgetOut,
    MonthOut,
    SubcategoryIn,
    SubcategoryReorderIn,
    SubcategoryUpdate,
    TransactionIn,
    TransactionOut,
    VisibilityIn,
)
from services import (
    BudgetService,
    CategoryNotFound,
    IngestService,
    LegacyEntryService,
    MonthOverview,
    MonthService,
    SpendingService,
    SpendingSummary,
    SubcategoryNotFound,
    TaxonomyService,
    TransactionService,
    VisibilityService,
    cents_to_decimal,
)

logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="Household Budget", version=APP_VERSION)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    if get_settings().scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(OperationalError)
def store_unavailable_handler(request: Request, exc: OperationalError):
    logger.warning(f"store_error: path={request.url.path} error={exc.orig!r}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage temporarily unavailable, retry the request"},
        headers={"Retry-After": "5"},
    )


def month_from_path(month_key: str) -> MonthKey:
    try:
        return parse_month_key(month_key)
    except InvalidMonthKey as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def service_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, (CategoryNotFound, SubcategoryNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def spending_payload(summary: SpendingSummary) -> dict[str, object]:
    return {
        "month": str(summary.key),
        "source": summary.source,
        "by_category": {
            name: {
                "category_id": row.category_id,
                "total": str(row.total),
                "total_cents": row.total_cents,
            }
            for name, row in summary.by_category().items()
        },
        "subcategories": [
            {
                "subcategory_id": row.subcategory_id,
                "name": row.name,
                "category_id": row.category_id,
                "category_name": row.category_name,
                "total": str(row.total),
                "total_cents": row.total_cents,
            }
            for row in summary.subcategories
        ],
    }


def overview_payload(overview: MonthOverview) -> dict[str, object]:
    return {
        "month": MonthOut.model_validate(overview.month).model_dump(),
        "source": overview.source,
        "income_cents": overview.income_cents,
        "total_spent_cents": overview.total_spent_cents,
        "total_budget_cents": overview.total_budget_cents,
        "remaining_cents": overview.remaining_cents,
        "budget_remaining_cents": overview.budget_remaining_cents,
        "categories": [
            {
                "category_id": cat.category_id,
                "name": cat.name,
                "budget_cents": cat.budget_cents,
                "spent_cents": cat.spent_cents,
                "subcategories": [
                    {
                        "subcategory_id": line.subcategory_id,
                        "name": line.name,
                        "budget_cents": line.budget_cents,
                        "spent_cents": line.spent_cents,
                        "remaining_cents": line.remaining_cents,
                        "is_visible": line.is_visible,
                    }
                    for line in cat.lines
                ],
            }
            for cat in overview.categories
        ],
    }


def subcategory_payload(sub) -> dict[str, object]:
    return {
        "id": sub.id,
        "category_id": sub.category_id,
        "name": sub.name,
        "display_order": sub.display_order,
    }


@app.get("/api/months")
def api_available_months(db: Session = Depends(get_db)):
    return {"months": TransactionService(db).available_months()}


@app.get("/api/months/{month_key}")
def api_resolve_month(month_key: str, db: Session = Depends(get_db)):
    key = month_from_path(month_key)
    month = MonthService(db).resolve(key.year, key.month)
    return MonthOut.model_validate(month).model_dump()


@app.get("/api/months/{month_key}/budgets")
def api_month_budgets(month_key: str, db: Session = Depends(get_db)):
    key = month_from_path(month_key)
    rows = BudgetService(db).resolve(key.year, key.month)
    return {
        "month": str(key),
        "budgets": [MonthBudgetOut.model_validate(row).model_dump() for row in rows],
    }


@app.put("/api/months/{month_key}/budgets/{subcategory_id}")
def api_set_budget(
    month_key: str, subcategory_id: int, data: BudgetIn, db: Session = Depends(get_db)
):
    key = month_from_path(month_key)
    try:
        row = BudgetService(db).set_budget(
            key.year, key.month, subcategory_id, data.amount_cents
        )
    except ValueError as exc:
        raise service_error(exc) from exc
    return MonthBudgetOut.model_validate(row).model_dump()


@app.get("/api/months/{month_key}/visibility")
def api_month_visibility(month_key: str, db: Session = Depends(get_db)):
    key = month_from_path(month_key)
    flags = VisibilityService(db).resolve(key.year, key.month)
    return {
        "month": str(key),
        "visibility": {str(sub_id): visible for sub_id, visible in flags.items()},
    }


@app.put("/api/months/{month_key}/visibility/{subcategory_id}")
def api_set_visibility(
    month_key: str,
    subcategory_id: int,
    data: VisibilityIn,
    db: Session = Depends(get_db),
):
    key = month_from_path(month_key)
    try:
        row = VisibilityService(db).set_visibility(
            key.year, key.month, subcategory_id, data.is_visible
        )
    except ValueError as exc:
        raise service_error(exc) from exc
    return {
        "month": str(key),
        "subcategory_id": row.subcategory_id,
        "is_visible": row.is_visible,
    }


@app.get("/api/months/{month_key}/spending")
def api_month_spending(month_key: str, db: Session = Depends(get_db)):
    key = month_from_path(month_key)
    return spending_payload(SpendingService(db).aggregate(key.year, key.month))


@app.get("/api/months/{month_key}/overview")
def api_month_overview(month_key: str, db: Session = Depends(get_db)):
    key = month_from_path(month_key)
    return overview_payload(SpendingService(db).month_overview(key.year, key.month))


@app.get("/api/months/{month_key}/records")
def api_month_records(month_key: str, db: Session = Depends(get_db)):
    key = month_from_path(month_key)
    records = SpendingService(db).month_records(key.year, key.month)
    return {
        "month": str(key),
        "items": [
            {
                "source": record.source,
                "id": record.id,
                "subcategory_id": record.subcategory_id,
                "amount_cents": record.amount_cents,
                "amount": format_cents(record.amount_cents),
                "occurred_at": (
                    record.occurred_at.isoformat() if record.occurred_at else None
                ),
                "notes": record.notes,
            }
            for record in records
        ],
    }


@app.get("/api/months/{month_key}/export.csv")
def api_month_export(month_key: str, db: Session = Depends(get_db)):
    key = month_from_path(month_key)
    records = SpendingService(db).month_records(key.year, key.month)
    labels = {
        sub.id: (sub.category.name, sub.name)
        for sub in TaxonomyService(db).list_subcategories()
    }
    csv_text = export_month_records(records, labels)
    filename = f"spending_{key}.csv"
    return StreamingResponse(
        iter([csv_text]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/api/years/{year}/averages")
def api_annual_averages(year: int, db: Session = Depends(get_db)):
    try:
        averages = SpendingService(db).annual_averages(year)
    except InvalidMonthKey as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "year": averages.year,
        "subcategories": [
            {
                "subcategory_id": row.subcategory_id,
                "name": row.name,
                "category_name": row.category_name,
                "average": str(row.average),
                "budget": str(cents_to_decimal(row.budget_cents)),
            }
            for row in averages.subcategories
        ],
        "categories": {
            name: str(value) for name, value in averages.category_averages().items()
        },
    }


@app.get("/api/categories")
def api_categories(db: Session = Depends(get_db)):
    return [
        {"id": cat.id, "name": cat.name}
        for cat in TaxonomyService(db).list_categories()
    ]


@app.post("/api/categories", status_code=201)
def api_create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        category = TaxonomyService(db).create_category(data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return {"id": category.id, "name": category.name}


@app.get("/api/subcategories")
def api_subcategories(
    category_id: Optional[int] = None, db: Session = Depends(get_db)
):
    subs = TaxonomyService(db).list_subcategories(category_id)
    return [subcategory_payload(sub) for sub in subs]


@app.post("/api/subcategories", status_code=201)
def api_create_subcategory(data: SubcategoryIn, db: Session = Depends(get_db)):
    try:
        sub = TaxonomyService(db).create_subcategory(data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return subcategory_payload(sub)


@app.post("/api/subcategories/reorder")
def api_reorder_subcategories(
    data: SubcategoryReorderIn, db: Session = Depends(get_db)
):
    try:
        subs = TaxonomyService(db).reorder_subcategories(data.subcategory_ids)
    except ValueError as exc:
        raise service_error(exc) from exc
    return [subcategory_payload(sub) for sub in subs]


@app.patch("/api/subcategories/{subcategory_id}")
def api_update_subcategory(
    subcategory_id: int, data: SubcategoryUpdate, db: Session = Depends(get_db)
):
    try:
        sub = TaxonomyService(db).update_subcategory(subcategory_id, data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return subcategory_payload(sub)


@app.delete("/api/subcategories/{subcategory_id}", status_code=204)
def api_delete_subcategory(subcategory_id: int, db: Session = Depends(get_db)):
    try:
        TaxonomyService(db).delete_subcategory(subcategory_id)
    except ValueError as exc:
        raise service_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transactions")
def api_transactions(month: Optional[str] = None, db: Session = Depends(get_db)):
    service = TransactionService(db)
    if month:
        key = month_from_path(month)
        items = service.list_for_month(key.year, key.month)
    else:
        items = service.list_all()
    return {
        "items": [TransactionOut.model_validate(txn).model_dump() for txn in items]
    }


@app.post("/api/transactions", status_code=201)
def api_record_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).record(data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return TransactionOut.model_validate(txn).model_dump()


@app.post("/api/ingest", status_code=201)
def api_ingest(data: IngestTransactionIn, db: Session = Depends(get_db)):
    try:
        txn = IngestService(db).ingest(data)
    except ValueError as exc:
        raise service_error(exc) from exc
    return TransactionOut.model_validate(txn).model_dump()


@app.post("/api/entries/import")
async def api_import_entries(
    file: UploadFile = File(...), db: Session = Depends(get_db)
):
    content = (await file.read()).decode("utf-8")
    rows, errors = parse_entries_csv(content)
    imported, import_errors = LegacyEntryService(db).import_rows(rows)
    return {"imported": imported, "errors": errors + import_errors}
