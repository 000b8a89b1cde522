import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import orders as workflow
from config import ConfigError, Settings
from database import (
    PRODUCTS,
    USERS,
    connect,
    create_document,
    ensure_indexes,
    get_db,
    get_documents,
    parse_object_id,
    serialize_doc,
    utcnow,
)
from errors import Conflict, NotFound, Unauthorized, ValidationError, register_error_handlers
from schemas import MAX_INT64, OrderStatus, Product as ProductSchema, Role, User as UserSchema
from security import (
    TokenClaims,
    ensure_owner_or_admin,
    get_current_user,
    get_settings,
    hash_password,
    issue_token,
    require_admin,
    verify_password,
)

logger = logging.getLogger(__name__)


# Auth models
class SignupInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=1)
    role: Role = Role.customer


class LoginInput(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    token: str
    user: Dict[str, Any]


# Product models
class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: float = Field(..., ge=0, allow_inf_nan=False)
    quantity: int = Field(..., ge=0, le=MAX_INT64)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    quantity: Optional[int] = Field(None, ge=0, le=MAX_INT64)


# Order models
class OrderIn(BaseModel):
    product: str
    quantity: int = Field(..., ge=1, le=MAX_INT64)


class OrderUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    quantity: Optional[int] = Field(None, ge=1, le=MAX_INT64)
    product: Optional[str] = None


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if database is None:
        database = connect(settings)
    ensure_indexes(database)

    app = FastAPI(title="Inventory API")
    app.state.settings = settings
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    # Routes
    @app.get("/")
    def read_root():
        return {"message": "Inventory API"}

    @app.get("/health")
    def health(db: Database = Depends(get_db)):
        response = {
            "status": "ok",
            "database": "unavailable",
            "database_name": db.name,
            "collections": [],
        }
        try:
            db.command("ping")
            response["collections"] = sorted(db.list_collection_names())
            response["database"] = "connected"
        except PyMongoError as e:
            logger.warning("Health check could not reach the database: %s", e)
            response["status"] = "degraded"
        return response

    # Auth
    @app.post("/auth/signup", status_code=201, response_model=AuthResponse)
    def signup(payload: SignupInput, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        email = payload.email.lower()
        if db[USERS].find_one({"email": email}):
            logger.info("Signup refused, %s already registered", email)
            raise Conflict("Email already in use")
        user_model = UserSchema(
            name=payload.name,
            email=email,
            password_hash=hash_password(payload.password),
            role=payload.role,
        )
        try:
            user_id = create_document(db, USERS, user_model)
        except DuplicateKeyError:
            raise Conflict("Email already in use")
        user = serialize_doc(db[USERS].find_one({"_id": parse_object_id(user_id)}))
        logger.info("New %s account %s", user["role"], user["id"])
        return AuthResponse(token=issue_token(user, settings.jwt_secret), user=user)

    @app.post("/auth/login", response_model=AuthResponse)
    def login(payload: LoginInput, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
        user = db[USERS].find_one({"email": payload.email.lower()})
        if not user or not verify_password(payload.password, user.get("password_hash", "")):
            logger.info("Failed login for %s", payload.email)
            raise Unauthorized("Invalid email or password")
        user = serialize_doc(user)
        return AuthResponse(token=issue_token(user, settings.jwt_secret), user=user)

    @app.get("/auth/profile")
    def profile(claims: TokenClaims = Depends(get_current_user), db: Database = Depends(get_db)):
        user = db[USERS].find_one({"_id": parse_object_id(claims.id, "user ID")})
        if not user:
            raise NotFound("User not found")
        return {"user": serialize_doc(user)}

    # Products
    @app.get("/products")
    def list_products(_: TokenClaims = Depends(get_current_user), db: Database = Depends(get_db)):
        docs = get_documents(db, PRODUCTS, sort=[("created_at", -1)])
        return [serialize_doc(d) for d in docs]

    @app.get("/products/{product_id}")
    def get_product(product_id: str, _: TokenClaims = Depends(get_current_user), db: Database = Depends(get_db)):
        product = db[PRODUCTS].find_one({"_id": parse_object_id(product_id, "product ID")})
        if not product:
            raise NotFound("Product not found")
        return serialize_doc(product)

    @app.post("/products", status_code=201)
    def create_product(data: ProductIn, _: TokenClaims = Depends(require_admin), db: Database = Depends(get_db)):
        product = ProductSchema(**data.model_dump())
        new_id = create_document(db, PRODUCTS, product)
        return serialize_doc(db[PRODUCTS].find_one({"_id": parse_object_id(new_id)}))

    @app.put("/products/{product_id}")
    def update_product(
        product_id: str,
        data: ProductUpdate,
        _: TokenClaims = Depends(require_admin),
        db: Database = Depends(get_db),
    ):
        obj_id = parse_object_id(product_id, "product ID")
        update_dict = data.model_dump(exclude_none=True)
        if not update_dict:
            raise ValidationError("No fields to update")
        update_dict["updated_at"] = utcnow()
        res = db[PRODUCTS].update_one({"_id": obj_id}, {"$set": update_dict})
        if res.matched_count == 0:
            raise NotFound("Product not found")
        return serialize_doc(db[PRODUCTS].find_one({"_id": obj_id}))

    @app.delete("/products/{product_id}")
    def delete_product(product_id: str, _: TokenClaims = Depends(require_admin), db: Database = Depends(get_db)):
        res = db[PRODUCTS].delete_one({"_id": parse_object_id(product_id, "product ID")})
        if res.deleted_count == 0:
            raise NotFound("Product not found")
        return {"message": "Product deleted successfully"}

    # Orders
    @app.get("/orders")
    def list_orders(_: TokenClaims = Depends(get_current_user), db: Database = Depends(get_db)):
        return workflow.list_orders(db)

    @app.get("/orders/user/{user_id}")
    def list_user_orders(
        user_id: str,
        current_user: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        ensure_owner_or_admin(current_user, user_id)
        return workflow.list_orders_for_customer(db, parse_object_id(user_id, "user ID"))

    @app.post("/orders", status_code=201)
    def create_order(
        data: OrderIn,
        current_user: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        return workflow.place_order(
            db,
            customer_id=parse_object_id(current_user.id, "user ID"),
            product_id=parse_object_id(data.product, "product ID"),
            quantity=data.quantity,
        )

    @app.put("/orders/{order_id}")
    def update_order(
        order_id: str,
        data: OrderUpdate,
        current_user: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        new_product = parse_object_id(data.product, "product ID") if data.product is not None else None
        return workflow.update_order(
            db,
            parse_object_id(order_id, "order ID"),
            current_user,
            status=data.status,
            quantity=data.quantity,
            product_id=new_product,
        )

    @app.delete("/orders/{order_id}")
    def delete_order(
        order_id: str,
        current_user: TokenClaims = Depends(get_current_user),
        db: Database = Depends(get_db),
    ):
        workflow.delete_order(db, parse_object_id(order_id, "order ID"), current_user)
        return {"message": "Order deleted successfully"}

    # Users
    @app.get("/users")
    def list_users(_: TokenClaims = Depends(require_admin), db: Database = Depends(get_db)):
        return [serialize_doc(u) for u in get_documents(db, USERS, sort=[("created_at", -1)])]

    return app


if __name__ == "__main__":
    import uvicorn

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error("Error: %s", e)
        raise SystemExit(1)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(settings)
    logger.info("Server is running on port %d", settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
