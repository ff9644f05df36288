import logging
from datetime import date
from typing import Any, Optional

from fastapi import (
    Body,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import get_current_user, get_current_user_id, issue_access_token
from config import get_settings
from csv_utils import get_template, parse_bank_csv, to_candidates
from database import get_db, init_db
from errors import ImportValidationError
from importer import ensure_fallback_categories, import_transactions
from models import TransactionType, User
from schemas import (
    BudgetIn,
    BudgetPatch,
    CategoryIn,
    SignInIn,
    SignUpIn,
    TransactionIn,
    TransactionPatch,
)
from services import (
    BudgetNotFound,
    BudgetService,
    CategoryService,
    MetricsService,
    TransactionFilters,
    TransactionNotFound,
    TransactionService,
    UserService,
    serialize_budget,
    serialize_category,
    serialize_transaction,
)
from store import SQLAlchemyStore

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Personal Finance")


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("Database tables ready")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": exc.detail}, status_code=exc.status_code, headers=exc.headers
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": validation_errors(exc)}, status_code=400)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse({"error": "Internal Server Error"}, status_code=500)


def validation_errors(exc: Any) -> list[dict[str, Any]]:
    return [
        {"path": [str(part) for part in err["loc"]], "message": err["msg"]}
        for err in exc.errors()
    ]


def parse_model(model: Any, payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=validation_errors(exc)) from exc


def filters_from_query(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    category: Optional[str] = Query(default=None),
    type: Optional[TransactionType] = Query(default=None),
) -> TransactionFilters:
    return TransactionFilters(
        start_date=start_date,
        end_date=end_date,
        year=year,
        month=month,
        category_id=category,
        type=type,
    )


@app.post("/api/auth/register")
def register(payload: dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    data = parse_model(SignUpIn, payload)
    try:
        user = UserService(db).register(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"data": {"id": user.id, "email": user.email}}


@app.post("/api/auth/token")
def login(payload: dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    data = parse_model(SignInIn, payload)
    if not data.email or not data.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    try:
        user = UserService(db).authenticate(data.email, data.password)
    except ValueError as exc:
        logger.warning("login_failed")
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    token, expires_at = issue_access_token(user.id)
    return {"access_token": token, "token_type": "bearer", "expires_at": expires_at}


@app.get("/api/auth/check")
def auth_check(user: User = Depends(get_current_user)):
    return {"authenticated": True, "user": {"id": user.id, "email": user.email}}


@app.post("/api/users/setup")
def user_setup(
    user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    created = CategoryService(db, user_id).create_defaults()
    message = (
        "User account set up successfully"
        if created
        else "User account already set up"
    )
    return {"success": True, "message": message}


@app.get("/api/categories")
def list_categories(
    type: Optional[TransactionType] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    categories = CategoryService(db, user_id).list_all(type)
    return {"data": [serialize_category(c) for c in categories]}


@app.post("/api/categories")
def create_category(
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = parse_model(CategoryIn, payload)
    category = CategoryService(db, user_id).create(data)
    return {"data": serialize_category(category)}


@app.post("/api/categories/setup")
def setup_categories(
    user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    CategoryService(db, user_id).create_defaults()
    return {"success": True, "message": "Categories setup completed successfully"}


@app.get("/api/transactions")
def list_transactions(
    filters: TransactionFilters = Depends(filters_from_query),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    items = TransactionService(db, user_id).list(filters)
    return {"data": [serialize_transaction(txn) for txn in items]}


@app.post("/api/transactions")
def create_transaction(
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = parse_model(TransactionIn, payload)
    try:
        txn = TransactionService(db, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"data": serialize_transaction(txn)}


@app.delete("/api/transactions/clear")
def clear_transactions(
    user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    count = TransactionService(db, user_id).clear()
    return {
        "success": True,
        "count": count,
        "message": f"Successfully deleted {count} transactions",
    }


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": serialize_transaction(txn)}


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: str,
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = parse_model(TransactionPatch, payload)
    try:
        txn = TransactionService(db, user_id).update(transaction_id, data)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"data": serialize_transaction(txn)}


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"success": True}


@app.get("/api/summary")
def summary(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return {"data": MetricsService(db, user_id).summary(start_date, end_date)}


@app.get("/api/spending-by-category")
def spending_by_category(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = MetricsService(db, user_id).spending_by_category(start_date, end_date)
    return {"data": data}


@app.get("/api/budgets")
def list_budgets(
    user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)
):
    budgets = BudgetService(db, user_id).list()
    return {"data": [serialize_budget(b) for b in budgets]}


@app.post("/api/budgets")
def create_budget(
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = parse_model(BudgetIn, payload)
    try:
        budget = BudgetService(db, user_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"data": serialize_budget(budget)}


@app.get("/api/budgets/progress")
def budget_progress(
    start_date: Optional[date] = Query(default=None, alias="startDate"),
    end_date: Optional[date] = Query(default=None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = BudgetService(db, user_id).progress(start=start_date, end=end_date)
    return {"data": data}


@app.get("/api/budgets/{budget_id}")
def get_budget(
    budget_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        budget = BudgetService(db, user_id).get(budget_id)
    except BudgetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": serialize_budget(budget)}


@app.patch("/api/budgets/{budget_id}")
def update_budget(
    budget_id: str,
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    data = parse_model(BudgetPatch, payload)
    try:
        budget = BudgetService(db, user_id).update(budget_id, data)
    except BudgetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"data": serialize_budget(budget)}


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except BudgetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"success": True}


@app.post("/api/import")
def import_endpoint(
    payload: dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        summary = import_transactions(
            SQLAlchemyStore(db), user_id, payload.get("transactions")
        )
    except ImportValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors) from exc
    return summary.as_response()


@app.post("/api/import/csv")
async def import_csv_endpoint(
    file: UploadFile = File(...),
    template: str = Form("custom"),
    date_column: Optional[str] = Form(None),
    description_column: Optional[str] = Form(None),
    amount_column: Optional[str] = Form(None),
    type_column: Optional[str] = Form(None),
    category_column: Optional[str] = Form(None),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        content = (await file.read()).decode("utf-8-sig")
        fmt = get_template(
            template,
            date_column=date_column,
            description_column=description_column,
            amount_column=amount_column,
            type_column=type_column,
            category_column=category_column,
        )
        rows = parse_bank_csv(content, fmt)
        store = SQLAlchemyStore(db)
        lookup = CategoryService(db, user_id).name_lookup()
        candidates = to_candidates(rows, lookup, fmt.date_format)
        if any(not c["category_id"] for c in candidates):
            fallback_ids = ensure_fallback_categories(store, user_id)
            candidates = to_candidates(rows, lookup, fmt.date_format, fallback_ids)
    except (UnicodeDecodeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        summary = import_transactions(store, user_id, candidates)
    except ImportValidationError as exc:
        raise HTTPException(status_code=400, detail=exc.errors) from exc
    return summary.as_response()


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
