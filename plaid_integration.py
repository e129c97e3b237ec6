import os
import datetime
from decimal import Decimal
import plaid
from plaid.api import plaid_api
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions
from dotenv import load_dotenv

load_dotenv()

# --- Plaid Client Setup ---
PLAID_CLIENT_ID = os.getenv('PLAID_CLIENT_ID')
PLAID_SECRET = os.getenv('PLAID_SECRET')
PLAID_ENV = os.getenv('PLAID_ENV', 'sandbox')
PLAID_ACCESS_TOKEN = os.getenv('PLAID_ACCESS_TOKEN')

PAGE_SIZE = 500
CENTS = Decimal("0.01")

host = plaid.Environment.Sandbox
if PLAID_ENV == 'production':
    host = plaid.Environment.Production


if not PLAID_CLIENT_ID or not PLAID_SECRET:
    # Calls below raise until credentials are configured
    client = None
else:
    configuration = plaid.Configuration(
        host=host,
        api_key={
            'clientId': PLAID_CLIENT_ID,
            'secret': PLAID_SECRET,
        }
    )
    api_client = plaid.ApiClient(configuration)
    client = plaid_api.PlaidApi(api_client)


def _require_client(access_token: str | None):
    if not client or not access_token:
        raise ValueError("Plaid credentials not set in .env")
    return client


def _to_decimal(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(CENTS)


def normalize_account(raw: dict, institution_name: str | None = None) -> dict:
    balances = raw.get("balances") or {}
    return {
        "id": raw.get("account_id"),
        "name": raw.get("official_name") or raw.get("name") or "",
        "institution_name": institution_name,
        "account_number": raw.get("mask"),
        "current_balance": _to_decimal(balances.get("current")),
        "currency": balances.get("iso_currency_code") or "NZD",
    }


def normalize_transaction(raw: dict) -> dict:
    """
    Converts a Plaid transaction into the shape the sync expects.
    """
    # Plaid convention: Positive = money out. Ours: Positive = money in.
    amount = -_to_decimal(raw.get("amount") or 0)

    posted = raw.get("datetime") or raw.get("date")
    if isinstance(posted, str):
        posted = datetime.datetime.fromisoformat(posted)
    if isinstance(posted, datetime.datetime):
        if posted.tzinfo is not None:
            posted = posted.astimezone(datetime.timezone.utc).replace(tzinfo=None)
    elif isinstance(posted, datetime.date):
        posted = datetime.datetime.combine(posted, datetime.time.min)

    return {
        "id": raw.get("transaction_id"),
        "account_id": raw.get("account_id"),
        "amount": amount,
        "description": raw.get("original_description") or raw.get("name") or "",
        "merchant_name": raw.get("merchant_name"),
        "reference": raw.get("check_number"),
        "transaction_type": raw.get("payment_channel") or raw.get("transaction_type"),
        "date": posted,
    }


def get_accounts(access_token: str | None = PLAID_ACCESS_TOKEN) -> list[dict]:
    """
    Lists the accounts linked to the access token.
    """
    api = _require_client(access_token)
    response = api.accounts_get(AccountsGetRequest(access_token=access_token)).to_dict()
    item = response.get("item") or {}
    institution_name = item.get("institution_name") or item.get("institution_id")
    return [normalize_account(a, institution_name) for a in response.get("accounts", [])]


def get_transactions(
    account_id: str,
    start_date: datetime.date,
    end_date: datetime.date,
    access_token: str | None = PLAID_ACCESS_TOKEN,
) -> list[dict]:
    """
    Fetches every transaction for one account in the date range using /transactions/get.
    """
    api = _require_client(access_token)
    transactions = []
    total = None
    while total is None or len(transactions) < total:
        request = TransactionsGetRequest(
            access_token=access_token,
            start_date=start_date,
            end_date=end_date,
            options=TransactionsGetRequestOptions(
                account_ids=[account_id],
                count=PAGE_SIZE,
                offset=len(transactions),
                include_original_description=True,
            ),
        )
        response = api.transactions_get(request).to_dict()
        page = response.get("transactions", [])
        total = response.get("total_transactions", 0)
        if not page:
            break
        transactions.extend(page)

    return [normalize_transaction(t) for t in transactions]
