import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from catalog import CategoryService, ProductService
from dashboard import DashboardService
from database import connect, ensure_indexes, serialize_doc
from errors import ApiError, Internal
from orders import OrderService, parse_order_ref
from payments import PaymentCallbackHandler, PaymentGateway
from recognition import ImageRecognizer
from schemas import OrderStatus, PaymentMethod, PaymentStatus
from security import (
    Principal,
    ensure_can_delete_order,
    ensure_can_update_order_status,
    ensure_can_view_order,
    get_current_user,
    require_admin,
)
from seed import seed_catalog_if_empty
from users import UserService, public_user

logger = logging.getLogger(__name__)


def ok(data: Any) -> Dict[str, Any]:
    return {"status": "success", "data": data}


# Request models
class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar: Optional[str] = None


class PasswordUpdateRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class CategoryCreateRequest(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None


class CategoryUpdateRequest(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class ProductCreateRequest(BaseModel):
    name: str
    slug: str
    category_id: str
    price: float = Field(..., ge=0)
    stock: int = 0
    description: Optional[str] = None
    short_description: Optional[str] = None
    images: List[str] = []
    supplier_id: Optional[str] = None
    is_best_seller: bool = False
    is_new: bool = False
    rating: float = 0


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    category_id: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    images: Optional[List[str]] = None
    supplier_id: Optional[str] = None
    is_best_seller: Optional[bool] = None
    is_new: Optional[bool] = None
    rating: Optional[float] = None


class VariantCreateRequest(BaseModel):
    size: Optional[str] = None
    variant: Optional[str] = None
    price: float = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)


class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    product_name: Optional[str] = None
    product_image: Optional[str] = None


class OrderCreateRequest(BaseModel):
    items: List[OrderItemRequest]
    customer_name: str
    customer_email: Optional[EmailStr] = None
    customer_phone: str
    shipping_address: str
    status: OrderStatus = "pending"
    payment_method: PaymentMethod = "cash"
    payment_status: PaymentStatus = "pending"
    subtotal: float = Field(0, ge=0)
    shipping_fee: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(0, ge=0)
    notes: Optional[str] = None
    order_id: Optional[str] = None


class OrderStatusRequest(BaseModel):
    status: OrderStatus


# Service accessors
def get_users(request: Request) -> UserService:
    return request.app.state.users


def get_categories(request: Request) -> CategoryService:
    return request.app.state.categories


def get_products(request: Request) -> ProductService:
    return request.app.state.products


def get_orders(request: Request) -> OrderService:
    return request.app.state.orders


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_callback_handler(request: Request) -> PaymentCallbackHandler:
    return request.app.state.callbacks


def get_dashboard(request: Request) -> DashboardService:
    return request.app.state.dashboard


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = app.state.db
    try:
        ensure_indexes(db)
        if config.SEED_DEMO_DATA:
            seed_catalog_if_empty(db)
        if config.ADMIN_EMAIL and config.ADMIN_PASSWORD:
            app.state.users.ensure_admin(config.ADMIN_EMAIL, config.ADMIN_PASSWORD)
    except PyMongoError as exc:
        logger.warning("Startup database tasks failed: %s", exc)
    yield


def create_app(
    db: Optional[Database] = None,
    gateway: Optional[PaymentGateway] = None,
    clock=None,
    recognizer: Optional[ImageRecognizer] = None,
) -> FastAPI:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if db is None:
        db = connect(config.DATABASE_URL, config.DATABASE_NAME)

    app = FastAPI(title="E-Commerce API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    orders = OrderService(db, transactions=config.MONGO_TRANSACTIONS)
    app.state.db = db
    app.state.users = UserService(db)
    app.state.categories = CategoryService(db)
    app.state.products = ProductService(
        db, recognizer or ImageRecognizer(config.RECOGNITION_URL, timeout=config.RECOGNITION_TIMEOUT)
    )
    app.state.orders = orders
    app.state.gateway = gateway or PaymentGateway(
        app_id=config.PAYMENT_APP_ID,
        key1=config.PAYMENT_KEY1,
        endpoint=config.PAYMENT_ENDPOINT,
        callback_url=config.PAYMENT_CALLBACK_URL,
        redirect_url=config.PAYMENT_REDIRECT_URL,
        timeout=config.PAYMENT_TIMEOUT,
    )
    app.state.callbacks = PaymentCallbackHandler(orders, config.PAYMENT_KEY2)
    app.state.dashboard = DashboardService(db, config.DASHBOARD_TIMEZONE, clock=clock)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"status": "error", "message": exc.message})

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    @app.get("/")
    def root():
        return {"message": "E-Commerce API running"}

    @app.get("/test")
    def test_database(request: Request):
        db = request.app.state.db
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": [],
        }
        try:
            response["database_name"] = db.name
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        return response

    # Auth
    @app.post("/api/auth/register", status_code=201)
    def register(req: RegisterRequest, users: UserService = Depends(get_users)):
        return ok(users.register(req.model_dump()))

    @app.post("/api/auth/login")
    def login(req: LoginRequest, users: UserService = Depends(get_users)):
        return ok(users.login(req.email, req.password))

    @app.get("/api/auth/me")
    def profile(principal: Principal = Depends(get_current_user), users: UserService = Depends(get_users)):
        return ok({"user": public_user(users.get_user(principal.id))})

    @app.patch("/api/auth/me")
    def update_profile(
        req: ProfileUpdateRequest,
        principal: Principal = Depends(get_current_user),
        users: UserService = Depends(get_users),
    ):
        return ok({"user": public_user(users.update_profile(principal.id, req.model_dump()))})

    @app.post("/api/auth/me/password")
    def update_password(
        req: PasswordUpdateRequest,
        principal: Principal = Depends(get_current_user),
        users: UserService = Depends(get_users),
    ):
        users.update_password(principal.id, req.current_password, req.new_password)
        return {"status": "success", "message": "Password updated successfully"}

    # Categories
    @app.get("/api/categories")
    def list_categories(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        search: Optional[str] = None,
        categories: CategoryService = Depends(get_categories),
    ):
        result = categories.list_categories(page, limit, search)
        return ok({
            "data": [serialize_doc(c) for c in result["categories"]],
            "total_count": result["total_count"],
            "total_pages": result["total_pages"],
            "current_page": page,
        })

    @app.get("/api/categories/slug/{slug}")
    def get_category_by_slug(slug: str, categories: CategoryService = Depends(get_categories)):
        return ok({"category": serialize_doc(categories.get_category_by_slug(slug))})

    @app.get("/api/categories/{category_id}")
    def get_category(category_id: str, categories: CategoryService = Depends(get_categories)):
        return ok({"category": serialize_doc(categories.get_category(category_id))})

    @app.post("/api/categories", status_code=201)
    def create_category(
        req: CategoryCreateRequest,
        admin: Principal = Depends(require_admin),
        categories: CategoryService = Depends(get_categories),
    ):
        return ok({"category": serialize_doc(categories.create_category(req.model_dump()))})

    @app.put("/api/categories/{category_id}")
    def update_category(
        category_id: str,
        req: CategoryUpdateRequest,
        admin: Principal = Depends(require_admin),
        categories: CategoryService = Depends(get_categories),
    ):
        updates = {k: v for k, v in req.model_dump().items() if v is not None}
        return ok({"category": serialize_doc(categories.update_category(category_id, updates))})

    @app.delete("/api/categories/{category_id}")
    def delete_category(
        category_id: str,
        admin: Principal = Depends(require_admin),
        categories: CategoryService = Depends(get_categories),
    ):
        categories.delete_category(category_id)
        return {"status": "success", "message": "Category deleted successfully"}

    # Products
    @app.get("/api/products")
    def list_products(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        sort: str = "-created_at",
        category_id: Optional[str] = None,
        supplier_id: Optional[str] = None,
        is_best_seller: Optional[bool] = None,
        is_new: Optional[bool] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        search: Optional[str] = None,
        products: ProductService = Depends(get_products),
    ):
        filters = {
            "category_id": category_id,
            "supplier_id": supplier_id,
            "is_best_seller": is_best_seller,
            "is_new": is_new,
            "min_price": min_price,
            "max_price": max_price,
            "search": search,
        }
        result = products.list_products(page, limit, filters, sort)
        return ok({
            "data": [serialize_doc(p) for p in result["products"]],
            "total_count": result["total_count"],
            "total_pages": result["total_pages"],
            "current_page": page,
        })

    @app.post("/api/products/search-by-image")
    def search_products_by_image(
        file: UploadFile = File(...),
        products: ProductService = Depends(get_products),
    ):
        name, found = products.search_by_image(
            file.file.read(), file.filename or "upload", file.content_type or "application/octet-stream"
        )
        return ok({"name": name, "products": [serialize_doc(p) for p in found]})

    @app.get("/api/products/slug/{slug}")
    def get_product_by_slug(slug: str, products: ProductService = Depends(get_products)):
        return ok({"product": serialize_doc(products.get_product_by_slug(slug))})

    @app.get("/api/products/{product_id}")
    def get_product(product_id: str, products: ProductService = Depends(get_products)):
        return ok({"product": serialize_doc(products.get_product(product_id))})

    @app.get("/api/products/{product_id}/variants")
    def get_product_variants(product_id: str, products: ProductService = Depends(get_products)):
        product, variants = products.get_product_with_variants(product_id)
        return ok({"product": serialize_doc(product), "variants": [serialize_doc(v) for v in variants]})

    @app.post("/api/products", status_code=201)
    def create_product(
        req: ProductCreateRequest,
        admin: Principal = Depends(require_admin),
        products: ProductService = Depends(get_products),
    ):
        return ok({"product": serialize_doc(products.create_product(req.model_dump()))})

    @app.put("/api/products/{product_id}")
    def update_product(
        product_id: str,
        req: ProductUpdateRequest,
        admin: Principal = Depends(require_admin),
        products: ProductService = Depends(get_products),
    ):
        updates = {k: v for k, v in req.model_dump().items() if v is not None}
        return ok({"product": serialize_doc(products.update_product(product_id, updates))})

    @app.delete("/api/products/{product_id}")
    def delete_product(
        product_id: str,
        admin: Principal = Depends(require_admin),
        products: ProductService = Depends(get_products),
    ):
        products.delete_product(product_id)
        return {"status": "success", "message": "Product deleted successfully"}

    @app.post("/api/products/{product_id}/variants", status_code=201)
    def create_variant(
        product_id: str,
        req: VariantCreateRequest,
        admin: Principal = Depends(require_admin),
        products: ProductService = Depends(get_products),
    ):
        return ok({"variant": serialize_doc(products.create_variant(product_id, req.model_dump()))})

    # Orders
    @app.post("/api/orders", status_code=201)
    def create_order(
        req: OrderCreateRequest,
        principal: Principal = Depends(get_current_user),
        orders: OrderService = Depends(get_orders),
        gateway: PaymentGateway = Depends(get_gateway),
    ):
        order = orders.create_order(req.model_dump(), user_id=principal.id)
        if order.get("payment_method") == "bank_transfer":
            _, items = orders.get_order(parse_order_ref(order["_id"]))
            try:
                payment_data = gateway.create_payment(order, items)
            except Internal as exc:
                # order is already committed
                logger.warning("Order %s created without payment: %s", order["order_id"], exc.message)
                return ok({"payment_data": None, "payment_error": exc.message, "order": serialize_doc(order)})
            return ok({"payment_data": payment_data, "order": serialize_doc(order)})
        return ok({"order": serialize_doc(order)})

    @app.post("/api/orders/callback")
    async def payment_callback(
        request: Request,
        handler: PaymentCallbackHandler = Depends(get_callback_handler),
    ):
        # read raw: every malformed body gets the provider envelope
        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}
        return await run_in_threadpool(handler.handle, body.get("data"), body.get("mac"))

    @app.get("/api/orders/me")
    def list_my_orders(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        principal: Principal = Depends(get_current_user),
        orders: OrderService = Depends(get_orders),
    ):
        result = orders.list_user_orders(principal.id, page, limit)
        return ok({
            "data": [serialize_doc(o) for o in result["orders"]],
            "total_count": result["total_count"],
            "total_pages": result["total_pages"],
            "current_page": page,
        })

    @app.get("/api/orders")
    def list_orders(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=100),
        status: Optional[OrderStatus] = None,
        customer_phone: Optional[str] = None,
        admin: Principal = Depends(require_admin),
        orders: OrderService = Depends(get_orders),
    ):
        result = orders.list_orders(page, limit, status, customer_phone)
        return ok({
            "data": [serialize_doc(o) for o in result["orders"]],
            "total_count": result["total_count"],
            "total_pages": result["total_pages"],
            "current_page": page,
        })

    @app.get("/api/orders/{order_ref}")
    def get_order(
        order_ref: str,
        principal: Principal = Depends(get_current_user),
        orders: OrderService = Depends(get_orders),
    ):
        order, items = orders.get_order(parse_order_ref(order_ref))
        ensure_can_view_order(principal, order)
        return ok({"order": serialize_doc(order), "items": [serialize_doc(i) for i in items]})

    @app.patch("/api/orders/{order_ref}/status")
    def update_order_status(
        order_ref: str,
        req: OrderStatusRequest,
        principal: Principal = Depends(get_current_user),
        orders: OrderService = Depends(get_orders),
    ):
        ref = parse_order_ref(order_ref)
        order, _ = orders.get_order(ref)
        ensure_can_update_order_status(principal, order, req.status)
        return ok({"order": serialize_doc(orders.update_order_status(ref, req.status))})

    @app.delete("/api/orders/{order_ref}")
    def delete_order(
        order_ref: str,
        principal: Principal = Depends(get_current_user),
        orders: OrderService = Depends(get_orders),
    ):
        ensure_can_delete_order(principal)
        orders.delete_order(parse_order_ref(order_ref))
        return {"status": "success", "message": "Order deleted successfully"}

    # Dashboard
    @app.get("/api/dashboard/overview")
    def dashboard_overview(admin: Principal = Depends(require_admin), dashboard: DashboardService = Depends(get_dashboard)):
        return ok(dashboard.overview())

    @app.get("/api/dashboard/recent-orders")
    def dashboard_recent_orders(admin: Principal = Depends(require_admin), dashboard: DashboardService = Depends(get_dashboard)):
        return ok({"orders": [serialize_doc(o) for o in dashboard.recent_orders()]})

    @app.get("/api/dashboard/statistics")
    def dashboard_statistics(admin: Principal = Depends(require_admin), dashboard: DashboardService = Depends(get_dashboard)):
        return ok(dashboard.statistics())


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
