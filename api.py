"""FastAPI server exposing sync, the transaction feed and cashflow analytics."""

import logging
import os
from datetime import date, datetime
from typing import List, Optional

import plaid
from fastapi import Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

import analytics
import plaid_integration
from database import Category, CATEGORY_TYPES, TRANSACTION_TYPE, get_db, init_db
from export import export_transactions_csv
from queries import TransactionNotFound, get_transaction_feed, parse_id_list, update_annotation
from sync_service import resolve_sync_window, run_sync

logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Insights API", version="0.1.0")

# Swapped out in tests for a fake aggregation source.
sync_source = plaid_integration


# --- Error handling ---

def _error(request: Request, status_code: int, message: str, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception while processing %s", request.url.path, exc_info=exc)
    return JSONResponse(status_code=status_code, content={"error": message, "status_code": status_code})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(request, 400, str(exc), exc)


@app.exception_handler(TransactionNotFound)
async def not_found_handler(request: Request, exc: TransactionNotFound):
    return _error(request, 404, str(exc), exc)


@app.exception_handler(plaid.ApiException)
async def plaid_error_handler(request: Request, exc: plaid.ApiException):
    return _error(request, 502, "Aggregation provider request failed.", exc)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    return _error(request, 500, "Unexpected server error.", exc)


def _category_type(value: str) -> str:
    if value not in CATEGORY_TYPES:
        raise ValueError(f"category_type must be one of {', '.join(CATEGORY_TYPES)}.")
    return value


# --- Sync ---

class SyncRequest(BaseModel):
    months_back: Optional[int] = Field(None, description="Months to sync when no dates are given")
    from_date: Optional[date] = None
    to_date: Optional[date] = None


class SyncResponse(BaseModel):
    from_date: date
    to_date: date
    accounts_synced: int
    transactions_synced: int


@app.post("/api/sync", response_model=SyncResponse)
def sync(req: SyncRequest, db: Session = Depends(get_db)):
    from_date, to_date = resolve_sync_window(req.months_back, req.from_date, req.to_date)
    return SyncResponse(**run_sync(db, from_date, to_date, source=sync_source))


# --- Transactions ---

class TransactionResponse(BaseModel):
    id: int
    external_id: Optional[str]
    account_id: int
    account_name: str
    amount: float
    direction: str
    description: str
    merchant_name: Optional[str]
    transaction_date: datetime
    is_bank_transfer: bool
    transaction_type_category_id: Optional[int] = None
    transaction_type_category_name: Optional[str] = None
    spend_type_category_id: Optional[int] = None
    spend_type_category_name: Optional[str] = None
    note: Optional[str] = None


@app.get("/api/transactions/export/csv")
def export_csv(db: Session = Depends(get_db)):
    file_name = f"transactions-export-{datetime.utcnow():%Y%m%d-%H%M%S}.csv"
    return Response(
        content=export_transactions_csv(db).encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@app.get("/api/transactions", response_model=List[TransactionResponse])
def transaction_feed(
    account_ids: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    include_bank_transfers: bool = True,
    direction: str = "all",
    transaction_type_category_ids: Optional[str] = None,
    spend_type_category_ids: Optional[str] = None,
    experimental_transfer_matching: bool = False,
    db: Session = Depends(get_db),
):
    rows = get_transaction_feed(
        db,
        account_ids=parse_id_list(account_ids),
        from_date=from_date,
        to_date=to_date,
        include_bank_transfers=include_bank_transfers,
        direction=direction,
        transaction_type_category_ids=parse_id_list(transaction_type_category_ids),
        spend_type_category_ids=parse_id_list(spend_type_category_ids),
        experimental_transfer_matching=experimental_transfer_matching,
    )

    result = []
    for t, is_transfer in rows:
        annotation = t.annotation
        tx_cat = annotation.transaction_type_category if annotation else None
        spend_cat = annotation.spend_type_category if annotation else None
        result.append(
            TransactionResponse(
                id=t.id,
                external_id=t.external_id,
                account_id=t.account_id,
                account_name=t.account.name if t.account else "",
                amount=float(t.amount),
                direction=t.direction,
                description=t.description or "",
                merchant_name=t.merchant_name,
                transaction_date=t.transaction_date,
                is_bank_transfer=is_transfer,
                transaction_type_category_id=tx_cat.id if tx_cat else None,
                transaction_type_category_name=tx_cat.name if tx_cat else None,
                spend_type_category_id=spend_cat.id if spend_cat else None,
                spend_type_category_name=spend_cat.name if spend_cat else None,
                note=annotation.note if annotation else None,
            )
        )
    return result


class AnnotationRequest(BaseModel):
    transaction_type_category_id: Optional[int] = None
    spend_type_category_id: Optional[int] = None
    note: Optional[str] = None


@app.put("/api/transactions/{transaction_id}/annotation", status_code=204)
def put_annotation(transaction_id: int, req: AnnotationRequest, db: Session = Depends(get_db)):
    update_annotation(
        db,
        transaction_id,
        transaction_type_category_id=req.transaction_type_category_id,
        spend_type_category_id=req.spend_type_category_id,
        note=req.note,
    )
    return Response(status_code=204)


# --- Categories ---

class CategoryResponse(BaseModel):
    id: int
    category_type: str
    name: str


@app.get("/api/categories", response_model=List[CategoryResponse])
def list_categories(category_type: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(Category)
    if category_type:
        query = query.filter(Category.category_type == _category_type(category_type))
    return [
        CategoryResponse(id=c.id, category_type=c.category_type, name=c.name)
        for c in query.order_by(Category.category_type, Category.name).all()
    ]


# --- Analytics ---

class CategoryCashflowResponse(BaseModel):
    category_id: Optional[int]
    category_name: str
    category_type: str
    money_in: float
    money_out: float
    net: float


class MonthlyCategoryOverviewResponse(BaseModel):
    year: int
    month: int
    category_id: Optional[int]
    category_name: str
    category_type: str
    money_in: float
    money_out: float


class AccountBalanceResponse(BaseModel):
    account_id: int
    account_name: str
    account_number: Optional[str]
    current_balance: Optional[float]
    currency: str


def _analytics_filters(
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    account_ids: Optional[str] = None,
    excluded_account_ids: Optional[str] = None,
    experimental_transfer_matching: bool = False,
) -> dict:
    return {
        "from_date": from_date,
        "to_date": to_date,
        "account_ids": parse_id_list(account_ids),
        "excluded_account_ids": parse_id_list(excluded_account_ids),
        "experimental_transfer_matching": experimental_transfer_matching,
    }


@app.get("/api/analytics/category-cashflow", response_model=List[CategoryCashflowResponse])
def category_cashflow(
    category_type: str = TRANSACTION_TYPE,
    filters: dict = Depends(_analytics_filters),
    db: Session = Depends(get_db),
):
    return analytics.category_cashflow(db, _category_type(category_type), **filters)


@app.get("/api/analytics/monthly-overview", response_model=List[MonthlyCategoryOverviewResponse])
def monthly_overview(
    category_type: str = TRANSACTION_TYPE,
    filters: dict = Depends(_analytics_filters),
    db: Session = Depends(get_db),
):
    return analytics.monthly_overview(db, _category_type(category_type), **filters)


@app.get("/api/analytics/account-balances", response_model=List[AccountBalanceResponse])
def account_balances(
    account_ids: Optional[str] = None,
    excluded_account_ids: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return analytics.account_balances(db, parse_id_list(account_ids), parse_id_list(excluded_account_ids))


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    init_db()
    uvicorn.run("api:app", host="0.0.0.0", port=8001, reload=True)
