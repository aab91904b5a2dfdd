from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import WalletSettings, get_settings
from .errors import InvalidAmountError, ValidationError, WalletError
from .logging import setup_logging
from .models import (
    Account, AccountHistory, BalanceAudit, DepositRequest, DepositResponse,
    OpenAccountRequest, ReversalResponse, ReverseRequest, Transaction,
    TransactionPage, TransferRequest, TransferResponse,
)
from .service import WalletService

STATUS_BY_CATEGORY = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "transient": status.HTTP_503_SERVICE_UNAVAILABLE,
    "internal": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def http_error(error: WalletError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_CATEGORY.get(error.category, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.to_dict(),
    )


def request_error(exc: RequestValidationError) -> WalletError:
    """Translate a rejected request body or query into the wallet error taxonomy."""
    errors = exc.errors()
    for err in errors:
        if err["loc"] and err["loc"][-1] == "amount":
            return InvalidAmountError(None if err["type"] == "missing" else err.get("input"))
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    return ValidationError(f"Invalid {field or 'request'}: {first.get('msg', 'invalid value')}")


def get_service(request: Request) -> WalletService:
    return request.app.state.wallet_service


def create_app(
    settings: Optional[WalletSettings] = None,
    service: Optional[WalletService] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_service = service is None
        app.state.wallet_service = service or WalletService.from_settings(settings)
        yield
        if owns_service:
            app.state.wallet_service.close()

    app = FastAPI(
        title="Wallet Ledger API",
        description="Digital wallet ledger: balances, deposits, transfers and reversals",
        version="1.0.0",
        root_path=root_path,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def handle_request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = request_error(exc)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": error.to_dict()})

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "wallet-ledger", "environment": settings.app_environment}

    @app.post("/accounts", response_model=Account, status_code=status.HTTP_201_CREATED, tags=["Accounts"])
    def open_account(request: OpenAccountRequest, wallet: WalletService = Depends(get_service)) -> Account:
        try:
            return wallet.open_account(request)
        except WalletError as e:
            raise http_error(e)

    @app.get("/accounts/{account_id}", response_model=AccountHistory, tags=["Accounts"])
    def get_account(
        account_id: str, limit: int = 50, offset: int = 0, wallet: WalletService = Depends(get_service)
    ) -> AccountHistory:
        try:
            return wallet.get_account(account_id, limit, offset)
        except WalletError as e:
            raise http_error(e)

    @app.get("/accounts/{account_id}/transactions", response_model=TransactionPage, tags=["Accounts"])
    def get_account_transactions(
        account_id: str, limit: int = 50, offset: int = 0, wallet: WalletService = Depends(get_service)
    ) -> TransactionPage:
        try:
            return wallet.get_transactions(account_id, limit, offset)
        except WalletError as e:
            raise http_error(e)

    @app.get("/accounts/{account_id}/audit", response_model=BalanceAudit, tags=["Accounts"])
    def audit_account(account_id: str, wallet: WalletService = Depends(get_service)) -> BalanceAudit:
        try:
            return wallet.audit_balance(account_id)
        except WalletError as e:
            raise http_error(e)

    @app.post("/deposits", response_model=DepositResponse, tags=["Ledger"])
    def deposit(request: DepositRequest, wallet: WalletService = Depends(get_service)) -> DepositResponse:
        try:
            return wallet.deposit(request)
        except WalletError as e:
            raise http_error(e)

    @app.post("/transfers", response_model=TransferResponse, tags=["Ledger"])
    def transfer(request: TransferRequest, wallet: WalletService = Depends(get_service)) -> TransferResponse:
        try:
            return wallet.transfer(request)
        except WalletError as e:
            raise http_error(e)

    @app.post("/reversals", response_model=ReversalResponse, tags=["Ledger"])
    def reverse(request: ReverseRequest, wallet: WalletService = Depends(get_service)) -> ReversalResponse:
        try:
            return wallet.reverse(request)
        except WalletError as e:
            raise http_error(e)

    @app.get("/transactions/{transaction_id}", response_model=Transaction, tags=["Ledger"])
    def get_transaction(transaction_id: int, wallet: WalletService = Depends(get_service)) -> Transaction:
        try:
            return wallet.get_transaction(transaction_id)
        except WalletError as e:
            raise http_error(e)

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_config=None)


if __name__ == "__main__":
    main()
