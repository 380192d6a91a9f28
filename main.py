import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database
from pymongo.errors import BulkWriteError, PyMongoError

from accounts import AccountService
from catalog import CatalogService
from config import Settings, configure_logging, get_settings
from database import connect, ensure_indexes, get_database, iso_now
from errors import (
    CONFIGURATION_NOT_FOUND,
    INVALID_CREDENTIAL,
    INVALID_TOKEN,
    AuthError,
    CourseNotFoundError,
    DuplicateReferenceError,
    TransactionNotFoundError,
    ValidationError,
)
from notifications import ReceiptDispatcher
from orders import OrderService
from reviews import ReviewService, average_rating
from schemas import (
    CheckoutRequest,
    CheckoutResponse,
    Course,
    CourseIn,
    LoginRequest,
    LoginResponse,
    PriceUpdate,
    RegisterRequest,
    Review,
    ReviewIn,
    ReviewList,
    SalesSummary,
    Transaction,
    TransactionDraft,
    User,
    UserRole,
    WishlistUpdate,
)

logger = logging.getLogger(__name__)

ORDERS_PER_PAGE = 10

http_bearer = HTTPBearer(auto_error=False)


def auth_status(error: AuthError) -> int:
    if error.code in (INVALID_CREDENTIAL, INVALID_TOKEN):
        return status.HTTP_401_UNAUTHORIZED
    if error.code == CONFIGURATION_NOT_FOUND:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


# Service lookups

def get_accounts(request: Request) -> AccountService:
    return request.app.state.accounts


def get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders


def get_reviews(request: Request) -> ReviewService:
    return request.app.state.reviews


def get_dispatcher(request: Request) -> ReceiptDispatcher:
    return request.app.state.dispatcher


# Session dependencies

def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    accounts: AccountService = Depends(get_accounts),
) -> Optional[User]:
    if credentials is None:
        return None
    try:
        user = accounts.current_user(credentials.credentials)
    except AuthError as e:
        raise HTTPException(status_code=auth_status(e), detail=str(e))
    if user is None:
        raise HTTPException(status_code=401, detail="Session has ended, please sign in again")
    return user


def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def build_services(app: FastAPI, settings: Settings, db: Database, dispatcher: Optional[ReceiptDispatcher] = None) -> None:
    app.state.settings = settings
    app.state.db = db
    app.state.catalog = CatalogService(db)
    app.state.orders = OrderService(db, app.state.catalog)
    app.state.reviews = ReviewService(db)
    app.state.accounts = AccountService(db, settings)
    app.state.dispatcher = dispatcher or ReceiptDispatcher(settings)


def bootstrap(app: FastAPI) -> None:
    """Indexes, seed catalog and default admin. Failures are logged, not fatal."""
    try:
        ensure_indexes(app.state.db)
    except PyMongoError as e:
        logger.warning("Index creation warning: %s", e)
    try:
        if app.state.catalog.seed_if_empty():
            logger.info("Seeded empty catalog")
        if app.state.accounts.ensure_default_admin():
            logger.info("Default admin account created")
    except (PyMongoError, AuthError) as e:
        logger.warning("Startup bootstrap incomplete: %s", e)


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    dispatcher: Optional[ReceiptDispatcher] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = None
        database = db
        if database is None:
            client = connect(settings.database_url, settings.database_name)
            database = get_database(client, settings.database_name)
        build_services(app, settings, database, dispatcher)
        bootstrap(app)
        yield
        app.state.dispatcher.close()
        if client is not None:
            client.close()
            logger.info("MongoDB connection closed")

    app = FastAPI(title="Course Store API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    # Health
    @app.get("/")
    def read_root():
        return {"message": "Course Store API running"}

    @app.get("/test")
    def test_database(request: Request):
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": [],
        }
        db = request.app.state.db
        try:
            response["collections"] = db.list_collection_names()
            response["database"] = "✅ Connected & Working"
            response["database_name"] = db.name
            response["connection_status"] = "Connected"
        except PyMongoError as e:
            response["database"] = f"❌ Error: {str(e)[:80]}"
        return response

    # Auth
    @app.post("/auth/register", response_model=LoginResponse)
    def register(data: RegisterRequest, accounts: AccountService = Depends(get_accounts)):
        try:
            user, token = accounts.register(data.username, str(data.email), data.password)
        except AuthError as e:
            raise HTTPException(status_code=auth_status(e), detail=str(e))
        return LoginResponse(access_token=token, user=user)

    @app.post("/auth/login", response_model=LoginResponse)
    def login(data: LoginRequest, accounts: AccountService = Depends(get_accounts)):
        try:
            user, token = accounts.authenticate(str(data.email), data.password)
        except AuthError as e:
            raise HTTPException(status_code=auth_status(e), detail=str(e))
        return LoginResponse(access_token=token, user=user)

    @app.post("/auth/logout")
    def logout(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
        accounts: AccountService = Depends(get_accounts),
    ):
        if credentials is None:
            raise HTTPException(status_code=401, detail="Not authenticated")
        try:
            accounts.sign_out(credentials.credentials)
        except AuthError as e:
            raise HTTPException(status_code=auth_status(e), detail=str(e))
        return {"ok": True}

    @app.get("/auth/me", response_model=User)
    def me(user: User = Depends(get_current_user)):
        return user

    # Catalog - public
    @app.get("/courses", response_model=List[Course])
    def list_courses(q: Optional[str] = None, catalog: CatalogService = Depends(get_catalog)):
        return catalog.list_courses(q)

    @app.get("/courses/{course_id}", response_model=Course)
    def get_course(course_id: int, catalog: CatalogService = Depends(get_catalog)):
        try:
            return catalog.get_course(course_id)
        except CourseNotFoundError:
            raise HTTPException(status_code=404, detail="Course not found")

    # Reviews
    @app.get("/courses/{course_id}/reviews", response_model=ReviewList)
    def list_course_reviews(course_id: int, reviews: ReviewService = Depends(get_reviews)):
        items = reviews.list_reviews(course_id)
        return ReviewList(reviews=items, average_rating=average_rating(items), count=len(items))

    @app.post("/courses/{course_id}/reviews", response_model=Review, status_code=201)
    def add_course_review(
        course_id: int,
        data: ReviewIn,
        user: User = Depends(get_current_user),
        catalog: CatalogService = Depends(get_catalog),
        orders: OrderService = Depends(get_orders),
        reviews: ReviewService = Depends(get_reviews),
    ):
        try:
            course = catalog.get_course(course_id)
        except CourseNotFoundError:
            raise HTTPException(status_code=404, detail="Course not found")
        if not orders.has_purchased(user.id, course.name):
            raise HTTPException(status_code=403, detail="Only students who bought this course can review it")
        review = Review(
            course_id=course_id,
            user_id=user.id,
            user_name=user.username,
            rating=data.rating,
            comment=data.comment,
            date=iso_now(),
        )
        reviews.add_review(review)
        return review

    @app.get("/courses/{course_id}/purchased")
    def course_purchased(
        course_id: int,
        user: User = Depends(get_current_user),
        catalog: CatalogService = Depends(get_catalog),
        orders: OrderService = Depends(get_orders),
    ):
        try:
            course = catalog.get_course(course_id)
        except CourseNotFoundError:
            raise HTTPException(status_code=404, detail="Course not found")
        return {"purchased": orders.has_purchased(user.id, course.name)}

    # Checkout
    @app.post("/checkout", response_model=CheckoutResponse)
    def checkout(
        data: CheckoutRequest,
        user: Optional[User] = Depends(get_optional_user),
        catalog: CatalogService = Depends(get_catalog),
        orders: OrderService = Depends(get_orders),
        dispatcher: ReceiptDispatcher = Depends(get_dispatcher),
    ):
        try:
            courses, total = catalog.resolve_cart(data.course_ids)
        except CourseNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

        draft = TransactionDraft(
            user_id=user.id if user else None,
            customer_name=data.name,
            payer_email=data.email,
            transaction_id=data.transaction_id,
            courses=[c.name for c in courses],
            total_amount=total,
        )
        try:
            transaction = orders.create_transaction(draft)
        except DuplicateReferenceError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        emailed = dispatcher.send_receipt(transaction)
        receipt_url = None if emailed else f"/receipts/{quote(transaction.transaction_id, safe='')}"
        return CheckoutResponse(transaction=transaction, receipt_emailed=emailed, receipt_url=receipt_url)

    @app.get("/receipts/{reference:path}")
    def download_receipt(reference: str, dispatcher: ReceiptDispatcher = Depends(get_dispatcher)):
        path = dispatcher.receipt_path(reference)
        if not path.is_file():
            raise HTTPException(status_code=404, detail="Receipt not found")
        return FileResponse(path, media_type="text/plain", filename=path.name)

    # Account pages
    @app.get("/me/courses", response_model=List[Course])
    def my_courses(user: User = Depends(get_current_user), orders: OrderService = Depends(get_orders)):
        return orders.purchased_courses(user.id)

    @app.get("/me/wishlist", response_model=List[Course])
    def my_wishlist(user: User = Depends(get_current_user), catalog: CatalogService = Depends(get_catalog)):
        wanted = set(user.wishlist)
        return [c for c in catalog.list_courses() if c.id in wanted]

    @app.post("/me/wishlist/{course_id}", response_model=WishlistUpdate)
    def toggle_wishlist(
        course_id: int,
        user: User = Depends(get_current_user),
        accounts: AccountService = Depends(get_accounts),
    ):
        return accounts.toggle_wishlist(user, course_id)

    # Admin - orders
    @app.get("/admin/orders", response_model=List[Transaction])
    def list_orders(
        page: Optional[int] = None,
        _: User = Depends(require_admin),
        orders: OrderService = Depends(get_orders),
    ):
        transactions = orders.list_transactions()
        if page is not None:
            start = (max(page, 1) - 1) * ORDERS_PER_PAGE
            transactions = transactions[start:start + ORDERS_PER_PAGE]
        return transactions

    @app.post("/admin/orders/{order_id}/confirm")
    def confirm_order(order_id: str, _: User = Depends(require_admin), orders: OrderService = Depends(get_orders)):
        try:
            orders.confirm_transaction(order_id)
        except TransactionNotFoundError:
            raise HTTPException(status_code=404, detail="Order not found")
        return {"ok": True}

    @app.get("/admin/summary", response_model=SalesSummary)
    def admin_summary(_: User = Depends(require_admin), orders: OrderService = Depends(get_orders)):
        return orders.sales_summary()

    # Admin - courses
    @app.post("/admin/courses", response_model=Course, status_code=201)
    def create_course(data: CourseIn, _: User = Depends(require_admin), catalog: CatalogService = Depends(get_catalog)):
        return catalog.add_course(data)

    @app.post("/admin/courses/bulk", response_model=List[Course], status_code=201)
    def bulk_create_courses(
        data: List[CourseIn],
        _: User = Depends(require_admin),
        catalog: CatalogService = Depends(get_catalog),
    ):
        try:
            return catalog.bulk_add_courses(data)
        except BulkWriteError:
            raise HTTPException(status_code=409, detail="Course ids changed while adding, please retry")

    @app.patch("/admin/courses/{course_id}/price")
    def update_course_price(
        course_id: int,
        data: PriceUpdate,
        _: User = Depends(require_admin),
        catalog: CatalogService = Depends(get_catalog),
    ):
        try:
            catalog.update_course_price(course_id, data.price)
        except CourseNotFoundError:
            raise HTTPException(status_code=404, detail="Course not found")
        return {"ok": True}

    @app.delete("/admin/courses/{course_id}")
    def delete_course(course_id: int, _: User = Depends(require_admin), catalog: CatalogService = Depends(get_catalog)):
        try:
            catalog.delete_course(course_id)
        except CourseNotFoundError:
            raise HTTPException(status_code=404, detail="Course not found")
        return {"deleted": True}

    @app.post("/admin/courses/reset")
    def reset_courses(_: User = Depends(require_admin), catalog: CatalogService = Depends(get_catalog)):
        catalog.reset_courses()
        return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=settings.port)
