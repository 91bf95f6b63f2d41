"""HTTP API for the diamond storefront."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from functools import partial
from typing import AsyncIterator, Callable, Dict, List, Optional

import anyio
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, WebSocket, status
from pydantic import BaseModel, ConfigDict, Field, StrictInt
from pydantic.alias_generators import to_camel
from starlette.websockets import WebSocketDisconnect

from .config import Settings, load_settings
from .database import MAX_DIAMONDS, Database
from .exceptions import InsufficientFundsError, NotFoundError, OrderAlreadyCompletedError
from .ledger import Ledger, balance_update_event, order_update_event
from .models import Order, OrderDetails, OrderStatus, Product, User
from .notifications import NotificationHub, send_websocket_json
from .security import SessionAuth
from .sessions import SESSION_COOKIE_NAME, SessionManager

logger = logging.getLogger("diamondstore.service")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(CamelModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    is_admin: bool
    diamond_balance: int
    created_at: datetime
    updated_at: datetime


class ProductResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    price: int
    image_url: Optional[str] = None
    created_at: datetime


class OrderResponse(CamelModel):
    id: int
    user_id: int
    product_id: int
    price: int
    status: str
    created_at: datetime
    completed_at: Optional[datetime] = None


class OrderDetailsResponse(OrderResponse):
    product: Optional[ProductResponse] = None
    user: Optional[UserResponse] = None


class PurchaseResponse(CamelModel):
    order: OrderResponse
    user: UserResponse


class MessageResponse(BaseModel):
    message: str


class RegisterRequest(CamelModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6, max_length=256)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=256)


class PurchaseRequest(CamelModel):
    product_id: int = Field(..., ge=1)


class AdjustDiamondsRequest(CamelModel):
    user_id: int = Field(..., ge=1)
    amount: StrictInt = Field(..., ge=-MAX_DIAMONDS, le=MAX_DIAMONDS)


class ProductCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: StrictInt = Field(..., gt=0, le=MAX_DIAMONDS)
    image_url: Optional[str] = Field(default=None, max_length=2048)


class ProductUpdateRequest(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[StrictInt] = Field(default=None, gt=0, le=MAX_DIAMONDS)
    image_url: Optional[str] = Field(default=None, max_length=2048)


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        profile_image_url=user.profile_image_url,
        is_admin=user.is_admin,
        diamond_balance=user.diamond_balance,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def _product_to_response(product: Product) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        name=product.name,
        description=product.description,
        price=product.price,
        image_url=product.image_url,
        created_at=product.created_at,
    )


def _order_fields(order: Order) -> Dict[str, object]:
    return {
        "id": order.id,
        "user_id": order.user_id,
        "product_id": order.product_id,
        "price": order.price,
        "status": order.status.value,
        "created_at": order.created_at,
        "completed_at": order.completed_at,
    }


def _order_to_response(order: Order) -> OrderResponse:
    return OrderResponse(**_order_fields(order))


def _details_to_response(details: OrderDetails) -> OrderDetailsResponse:
    return OrderDetailsResponse(
        **_order_fields(details.order),
        product=_product_to_response(details.product) if details.product else None,
        user=_user_to_response(details.user) if details.user else None,
    )


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def register_api_routes(
    app: FastAPI,
    *,
    database: Database,
    ledger: Ledger,
    sessions: SessionManager,
    hub: NotificationHub,
    secure_cookies: bool,
    current_user: Callable[..., User],
    admin_user: Callable[..., User],
    websocket_user: Callable[[WebSocket], Optional[User]],
) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    def _start_session(response: Response, user: User) -> None:
        token = sessions.create(user.id)
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            max_age=sessions.cookie_max_age,
            httponly=True,
            secure=secure_cookies,
            samesite="lax",
        )

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    @app.post("/api/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    async def register(request: RegisterRequest, response: Response) -> UserResponse:
        try:
            user = await anyio.to_thread.run_sync(
                partial(
                    database.create_user,
                    request.email,
                    request.password,
                    first_name=request.first_name,
                    last_name=request.last_name,
                )
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

        logger.info("Registered user %s <%s>", user.id, user.email)
        _start_session(response, user)
        return _user_to_response(user)

    @app.post("/api/login", response_model=UserResponse)
    async def login(request: LoginRequest, response: Response) -> UserResponse:
        user = await anyio.to_thread.run_sync(database.authenticate_user, request.email, request.password)
        if user is None:
            logger.warning("Failed login attempt for %s", request.email.strip().lower())
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password",
            )

        _start_session(response, user)
        logger.info("User %s logged in", user.id)
        return _user_to_response(user)

    @app.post("/api/auth/logout", response_model=MessageResponse)
    async def logout(
        request: Request,
        response: Response,
        user: User = Depends(current_user),
    ) -> MessageResponse:
        sessions.destroy(request.cookies.get(SESSION_COOKIE_NAME))
        response.delete_cookie(SESSION_COOKIE_NAME)
        return MessageResponse(message="Logged out")

    @app.get("/api/auth/user", response_model=UserResponse)
    async def get_current_user(user: User = Depends(current_user)) -> UserResponse:
        return _user_to_response(user)

    # ------------------------------------------------------------------
    # Storefront
    # ------------------------------------------------------------------
    @app.get("/api/products", response_model=List[ProductResponse])
    async def list_products() -> List[ProductResponse]:
        products = await anyio.to_thread.run_sync(database.list_products)
        return [_product_to_response(product) for product in products]

    @app.post("/api/purchase", response_model=PurchaseResponse)
    async def purchase(request: PurchaseRequest, user: User = Depends(current_user)) -> PurchaseResponse:
        try:
            result = await anyio.to_thread.run_sync(ledger.purchase, user.id, request.product_id)
        except NotFoundError as exc:
            raise _not_found(exc) from exc
        except InsufficientFundsError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        await hub.publish(result.user.id, balance_update_event(result.user))
        return PurchaseResponse(
            order=_order_to_response(result.order),
            user=_user_to_response(result.user),
        )

    @app.get("/api/orders", response_model=List[OrderDetailsResponse])
    async def list_own_orders(user: User = Depends(current_user)) -> List[OrderDetailsResponse]:
        orders = await anyio.to_thread.run_sync(database.list_orders_for_user, user.id)
        return [_details_to_response(details) for details in orders]

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------
    @app.get("/api/admin/users", response_model=List[UserResponse])
    async def list_users(admin: User = Depends(admin_user)) -> List[UserResponse]:
        users = await anyio.to_thread.run_sync(database.list_users)
        return [_user_to_response(user) for user in users]

    @app.delete("/api/admin/users/{user_id}", response_model=MessageResponse)
    async def delete_user(user_id: int, admin: User = Depends(admin_user)) -> MessageResponse:
        if user_id == admin.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Administrators cannot delete their own account",
            )
        if not await anyio.to_thread.run_sync(database.delete_user, user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        sessions.destroy_user(user_id)
        logger.info("Admin %s deleted user %s", admin.id, user_id)
        return MessageResponse(message="User deleted successfully")

    @app.post("/api/admin/adjust-diamonds", response_model=UserResponse)
    async def adjust_diamonds(
        request: AdjustDiamondsRequest,
        admin: User = Depends(admin_user),
    ) -> UserResponse:
        try:
            user = await anyio.to_thread.run_sync(ledger.adjust, request.user_id, request.amount)
        except NotFoundError as exc:
            raise _not_found(exc) from exc
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        logger.info("Admin %s adjusted user %s by %+d", admin.id, user.id, request.amount)
        await hub.publish(user.id, balance_update_event(user))
        return _user_to_response(user)

    @app.get("/api/admin/orders", response_model=List[OrderDetailsResponse])
    async def list_all_orders(
        status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
        admin: User = Depends(admin_user),
    ) -> List[OrderDetailsResponse]:
        orders = await anyio.to_thread.run_sync(database.list_orders, status_filter)
        return [_details_to_response(details) for details in orders]

    @app.post("/api/admin/orders/{order_id}/complete", response_model=OrderResponse)
    async def complete_order(order_id: int, admin: User = Depends(admin_user)) -> OrderResponse:
        try:
            order = await anyio.to_thread.run_sync(ledger.complete_order, order_id)
        except NotFoundError as exc:
            raise _not_found(exc) from exc
        except OrderAlreadyCompletedError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

        await hub.publish(order.user_id, order_update_event(order))
        return _order_to_response(order)

    @app.post(
        "/api/admin/products",
        response_model=ProductResponse,
        status_code=status.HTTP_201_CREATED,
    )
    async def create_product(
        request: ProductCreateRequest,
        admin: User = Depends(admin_user),
    ) -> ProductResponse:
        try:
            product = await anyio.to_thread.run_sync(
                partial(
                    database.create_product,
                    request.name,
                    request.price,
                    description=request.description,
                    image_url=request.image_url,
                )
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        logger.info("Admin %s created product %s (%s, %d diamonds)", admin.id, product.id, product.name, product.price)
        return _product_to_response(product)

    @app.put("/api/admin/products/{product_id}", response_model=ProductResponse)
    async def update_product(
        product_id: int,
        request: ProductUpdateRequest,
        admin: User = Depends(admin_user),
    ) -> ProductResponse:
        try:
            product = await anyio.to_thread.run_sync(
                partial(database.update_product, product_id, **request.model_dump(exclude_unset=True))
            )
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        if product is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
        return _product_to_response(product)

    @app.delete("/api/admin/products/{product_id}", response_model=MessageResponse)
    async def delete_product(product_id: int, admin: User = Depends(admin_user)) -> MessageResponse:
        try:
            deleted = await anyio.to_thread.run_sync(database.delete_product, product_id)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        if not deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

        logger.info("Admin %s deleted product %s", admin.id, product_id)
        return MessageResponse(message="Product deleted successfully")

    # ------------------------------------------------------------------
    # Real-time notifications
    # ------------------------------------------------------------------
    @app.websocket("/ws")
    async def notifications(websocket: WebSocket) -> None:
        user = await anyio.to_thread.run_sync(websocket_user, websocket)
        if user is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        hub.register(user.id, websocket)
        await send_websocket_json(websocket, {"type": "registered", "userId": user.id})
        try:
            while True:
                # Clients only listen; anything they send is ignored.
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            hub.unregister(user.id, websocket)


def create_app(
    *,
    database: Database | None = None,
    settings: Settings | None = None,
    sessions: SessionManager | None = None,
    hub: NotificationHub | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application for the storefront."""

    app_settings = settings or load_settings()
    db = database or Database(app_settings.database_path)
    db.initialize()

    session_manager = sessions if sessions is not None else SessionManager(ttl=app_settings.session_ttl)
    notification_hub = hub if hub is not None else NotificationHub()
    ledger = Ledger(db)

    if not app_settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await notification_hub.close()
        session_manager.clear()

    app = FastAPI(
        title="Diamond Store API",
        version="0.1.0",
        description="Storefront where users spend diamonds on products.",
        lifespan=lifespan,
    )

    app.state.database = db
    app.state.ledger = ledger
    app.state.session_manager = session_manager
    app.state.notifications = notification_hub

    auth = SessionAuth(db, session_manager)
    register_api_routes(
        app,
        database=db,
        ledger=ledger,
        sessions=session_manager,
        hub=notification_hub,
        secure_cookies=app_settings.secure_cookies,
        current_user=auth.current_user,
        admin_user=auth.admin_user,
        websocket_user=auth.websocket_user,
    )

    return app


__all__ = ["create_app", "register_api_routes"]
