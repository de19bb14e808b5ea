import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from backup_providers import SyncResult
from database import RecordStore, get_store
from errors import (
    NotConfiguredError,
    NotFoundError,
    StoreUnavailableError,
    SyncInProgressError,
)
from periods import current_cycle
from schemas import (
    CategoryIn,
    CategoryOut,
    CategorySummary,
    ExpenseIn,
    ExpenseRecord,
    ExpenseView,
    PeriodSummary,
    SettingIn,
    SubcategoryIn,
    SubcategoryOut,
)
from scheduler import SchedulerManager
from services import (
    CategoryService,
    ExpenseFilters,
    ExpenseService,
    ReportService,
    SettingService,
    SubcategoryService,
    expense_view,
)
from sync import SyncContext, SyncOrchestrator, SyncStatus

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Expense Tracker")

store = get_store()
sync_context = SyncContext(store)
orchestrator = SyncOrchestrator(store, sync_context)
scheduler_manager = SchedulerManager(orchestrator)


def get_record_store() -> RecordStore:
    return store


def get_sync_context() -> SyncContext:
    return sync_context


def get_orchestrator() -> SyncOrchestrator:
    return orchestrator


def get_db(record_store: RecordStore = Depends(get_record_store)):
    try:
        db = record_store.session()
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    try:
        yield db
    finally:
        db.close()


@app.on_event("startup")
def startup_event():
    store.open()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()
    store.close()


# Expenses


@app.get("/api/expenses", response_model=list[ExpenseView])
def list_expenses(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    category_id: Optional[int] = None,
    subcategory_id: Optional[int] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    filters = ExpenseFilters(
        date_from=date_from,
        date_to=date_to,
        category_id=category_id,
        subcategory_id=subcategory_id,
        search=search,
    )
    return [expense_view(e) for e in ExpenseService(db).list(filters)]


@app.post("/api/expenses", response_model=ExpenseRecord, status_code=201)
def create_expense(data: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseRecord.model_validate(expense)


@app.get("/api/expenses/{expense_id}", response_model=ExpenseView)
def get_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).get(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return expense_view(expense)


@app.put("/api/expenses/{expense_id}", response_model=ExpenseRecord)
def update_expense(expense_id: int, data: ExpenseIn, db: Session = Depends(get_db)):
    try:
        expense = ExpenseService(db).update(expense_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExpenseRecord.model_validate(expense)


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: int, db: Session = Depends(get_db)):
    try:
        ExpenseService(db).delete(expense_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Categories


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(category_id: int, data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).update(category_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get(
    "/api/categories/{category_id}/subcategories",
    response_model=list[SubcategoryOut],
)
def list_subcategories(category_id: int, db: Session = Depends(get_db)):
    try:
        return SubcategoryService(db).list_for_category(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/subcategories", response_model=SubcategoryOut, status_code=201)
def create_subcategory(data: SubcategoryIn, db: Session = Depends(get_db)):
    try:
        return SubcategoryService(db).create(data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/subcategories/{subcategory_id}", status_code=204)
def delete_subcategory(subcategory_id: int, db: Session = Depends(get_db)):
    try:
        SubcategoryService(db).delete(subcategory_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


# Reports


@app.get("/api/reports/monthly", response_model=PeriodSummary)
def monthly_summary(year: int, month: int, db: Session = Depends(get_db)):
    try:
        return ReportService(db).monthly_summary(year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/reports/cycle", response_model=PeriodSummary)
def cycle_summary(
    year: Optional[int] = None,
    month: Optional[int] = None,
    start_day: Optional[int] = None,
    db: Session = Depends(get_db),
):
    reports = ReportService(db)
    try:
        if start_day is None:
            return reports.configured_cycle_summary(year, month)
        if year is None or month is None:
            year, month = current_cycle(date.today(), start_day)
        return reports.cycle_summary(year, month, start_day)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/reports/category-breakdown", response_model=list[CategorySummary])
def category_breakdown(date_from: date, date_to: date, db: Session = Depends(get_db)):
    if date_from > date_to:
        raise HTTPException(status_code=400, detail="Start date must be before end date")
    return ReportService(db).category_breakdown(date_from, date_to)


# Settings


@app.get("/api/settings")
def list_settings(db: Session = Depends(get_db)) -> dict[str, str]:
    return SettingService(db).all()


@app.get("/api/settings/{key}")
def get_setting(key: str, db: Session = Depends(get_db)) -> dict[str, Optional[str]]:
    return {"key": key, "value": SettingService(db).get(key)}


@app.put("/api/settings/{key}")
def set_setting(
    key: str,
    data: SettingIn,
    db: Session = Depends(get_db),
    context: SyncContext = Depends(get_sync_context),
) -> dict[str, Optional[str]]:
    try:
        SettingService(db).set(key, data.value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    context.setting_changed(key)
    return {"key": key, "value": data.value}


@app.delete("/api/settings/{key}", status_code=204)
def delete_setting(
    key: str,
    db: Session = Depends(get_db),
    context: SyncContext = Depends(get_sync_context),
):
    if not SettingService(db).delete(key):
        raise HTTPException(status_code=404, detail="Setting not found")
    context.setting_changed(key)
    return Response(status_code=204)


# Sync


@app.get("/api/sync/status", response_model=SyncStatus)
def sync_status(sync: SyncOrchestrator = Depends(get_orchestrator)):
    return sync.status()


@app.post("/api/sync/authenticate")
def sync_authenticate(sync: SyncOrchestrator = Depends(get_orchestrator)) -> dict[str, bool]:
    try:
        return {"success": sync.authenticate()}
    except NotConfiguredError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _run_sync(operation) -> SyncResult:
    try:
        return operation()
    except NotConfiguredError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SyncInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.post("/api/sync/push", response_model=SyncResult)
def sync_push(sync: SyncOrchestrator = Depends(get_orchestrator)):
    return _run_sync(sync.push_to_cloud)


@app.post("/api/sync/pull", response_model=SyncResult)
def sync_pull(sync: SyncOrchestrator = Depends(get_orchestrator)):
    return _run_sync(sync.pull_from_cloud)


@app.post("/api/sync/bidirectional", response_model=SyncResult)
def sync_bidirectional(sync: SyncOrchestrator = Depends(get_orchestrator)):
    return _run_sync(sync.sync_bidirectional)


@app.post("/api/sync/logout")
def sync_logout(sync: SyncOrchestrator = Depends(get_orchestrator)) -> dict[str, bool]:
    return {"success": sync.logout()}
