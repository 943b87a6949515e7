import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from sqlalchemy.orm import Session, sessionmaker

from . import config, crud, models, schemas
from .auth import AuthenticationError, decode_access_token
from .checkout import EmptyCart, LoginRequired, SubmissionFailed, SubmissionInProgress
from .client import ClientSession, SessionRegistry
from .db import SessionLocal, engine, init_db
from .favorites import Pending
from .realtime import RealtimeHub, bind_change_feed, hub
from .search import ItemUnavailable
from .store import Store, StoreError, user_read
from .utils import sanitize_input

logger = logging.getLogger(__name__)

config.configure_logging()

init_db(engine)
bind_change_feed(SessionLocal, hub)

app = FastAPI(title="Tiffin Table")

_registry: Optional[SessionRegistry] = None


# Dependencies (overridden in tests)

def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_hub() -> RealtimeHub:
    return hub


def get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        _registry = SessionRegistry(Store(get_session_factory()), get_hub())
    return _registry


def get_client(x_session_id: str = Header(...), registry: SessionRegistry = Depends(get_registry)) -> ClientSession:
    client = registry.get(x_session_id)
    if client is None:
        raise HTTPException(status_code=404, detail="session not found")
    return client


def require_user(client: ClientSession = Depends(get_client)) -> ClientSession:
    if client.user is None:
        raise HTTPException(status_code=401, detail="login required")
    return client


def require_admin(request: Request, db: Session = Depends(get_db)) -> models.Profile:
    # resolve acting user from the Authorization bearer token
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="missing bearer token")
    token = auth.split(None, 1)[1]
    try:
        payload = decode_access_token(token)
    except AuthenticationError:
        raise HTTPException(status_code=401, detail="invalid token")
    acting = crud.get_profile(db, str(payload.get("sub")))
    if not acting:
        raise HTTPException(status_code=403, detail="acting user not found")
    if schemas.Role.admin.value not in crud.list_roles(db, acting.id):
        raise HTTPException(status_code=403, detail="forbidden: admin required")
    return acting


def _store_failure(e: StoreError) -> HTTPException:
    return HTTPException(status_code=502, detail=f"data service error: {e}")


@app.get("/health")
async def health():
    return {"status": "ok"}


# -------------------- Client sessions & auth --------------------

@app.post("/sessions", status_code=201)
async def create_session(registry: SessionRegistry = Depends(get_registry)):
    return {"session_id": registry.create().id}


@app.delete("/sessions/{session_id}")
async def close_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    if not registry.destroy(session_id):
        raise HTTPException(status_code=404, detail="session not found")
    return {"closed": session_id}


@app.post("/auth/signup", response_model=schemas.ProfileRead, status_code=201)
async def signup(payload: schemas.SignUp, client: ClientSession = Depends(get_client)):
    try:
        return await client.auth.sign_up(payload)
    except StoreError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/auth/login")
async def login(payload: schemas.Login, client: ClientSession = Depends(get_client)):
    try:
        identity = await client.sign_in(payload.email, payload.password)
    except AuthenticationError:
        raise HTTPException(status_code=401, detail="invalid credentials")
    except StoreError as e:
        raise _store_failure(e)
    return {
        "access_token": client.auth.access_token,
        "token_type": "bearer",
        "user_id": identity.user_id,
        "is_admin": identity.is_admin,
    }


@app.post("/auth/logout")
async def logout(client: ClientSession = Depends(get_client)):
    client.sign_out()
    return {"signed_out": True}


@app.get("/me")
async def me(client: ClientSession = Depends(require_user)):
    user = client.user
    return {"user_id": user.user_id, "email": user.email, "role": user.role.value, "is_admin": user.is_admin}


# -------------------- Menu --------------------

@app.get("/menu", response_model=List[schemas.MenuItemRead])
async def list_menu(category: Optional[str] = None, q: str = Query("", max_length=100), db: Session = Depends(get_db)):
    return crud.list_menu_items(db, category=category, q=sanitize_input(q) or None)


@app.get("/menu/{item_id}/reviews", response_model=List[schemas.ReviewRead])
async def list_item_reviews(item_id: str, db: Session = Depends(get_db)):
    if not crud.get_menu_item(db, item_id):
        raise HTTPException(status_code=404, detail="menu item not found")
    return crud.list_reviews(db, menu_item_id=item_id)


# -------------------- Cart --------------------

@app.get("/cart", response_model=schemas.CartRead)
async def get_cart(client: ClientSession = Depends(get_client)):
    return client.cart.read()


@app.post("/cart/items", response_model=schemas.CartRead)
async def add_to_cart(payload: schemas.CartAdd, client: ClientSession = Depends(get_client)):
    try:
        item = await client.store.get_menu_item(payload.menu_item_id)
    except StoreError as e:
        raise _store_failure(e)
    if item is None or not item.is_available:
        raise HTTPException(status_code=404, detail="menu item not available")
    if client.cart.add_item_guarded(item):
        client.notifier.success(f"{item.name} added to cart")
    return client.cart.read()


@app.patch("/cart/items/{item_id}", response_model=schemas.CartRead)
async def update_cart_item(item_id: str, payload: schemas.QuantityUpdate, client: ClientSession = Depends(get_client)):
    client.cart.update_quantity(item_id, payload.quantity)
    return client.cart.read()


@app.delete("/cart/items/{item_id}", response_model=schemas.CartRead)
async def remove_cart_item(item_id: str, client: ClientSession = Depends(get_client)):
    client.cart.remove_item(item_id)
    return client.cart.read()


@app.put("/cart/drawer", response_model=schemas.CartRead)
async def set_drawer(payload: schemas.DrawerUpdate, client: ClientSession = Depends(get_client)):
    if payload.open:
        client.cart.open()
    else:
        client.cart.close()
    return client.cart.read()


# -------------------- Checkout & orders --------------------

@app.post("/checkout", response_model=schemas.OrderRead, status_code=201)
async def checkout(client: ClientSession = Depends(get_client)):
    try:
        return await client.checkout.submit()
    except LoginRequired as e:
        raise HTTPException(status_code=401, detail=str(e))
    except EmptyCart as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SubmissionInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SubmissionFailed as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/orders", response_model=List[schemas.OrderRead])
async def my_orders(client: ClientSession = Depends(require_user)):
    return client.orders()


@app.post("/orders/refresh", response_model=List[schemas.OrderRead])
async def refresh_orders(client: ClientSession = Depends(require_user)):
    await client.tracker.refresh()
    if client.tracker.load_failed:
        raise HTTPException(status_code=502, detail="could not load orders")
    return client.orders()


# -------------------- Favorites --------------------

@app.get("/favorites", response_model=List[str])
async def my_favorites(client: ClientSession = Depends(require_user)):
    return client.favorites.favorites


@app.post("/favorites/{menu_item_id}/toggle", response_model=schemas.FavoriteToggle)
async def toggle_favorite(menu_item_id: str, client: ClientSession = Depends(get_client)):
    if client.user is None:
        client.notifier.error("Please login to add favorites")
        raise HTTPException(status_code=401, detail="login required")
    if isinstance(client.favorites.state_of(menu_item_id), Pending):
        raise HTTPException(status_code=409, detail="favorite update already in progress")
    before = client.favorites.is_favorite(menu_item_id)
    after = await client.favorites.toggle(menu_item_id)
    if after == before:
        raise HTTPException(status_code=502, detail="failed to update favorites")
    return schemas.FavoriteToggle(menu_item_id=menu_item_id, is_favorite=after)


# -------------------- Search --------------------

@app.get("/search", response_model=List[schemas.SearchResult])
async def search(
    q: str = Query("", max_length=100),
    filter: schemas.SearchFilter = Query("all"),
    client: ClientSession = Depends(get_client),
):
    return await client.search.query(q, filter)


@app.post("/search/select")
async def select_search_result(result: schemas.SearchResult, client: ClientSession = Depends(get_client)):
    try:
        target = await client.search.select(result)
    except ItemUnavailable:
        raise HTTPException(status_code=404, detail="menu item not available")
    except StoreError as e:
        raise _store_failure(e)
    return {"navigate": target, "cart": client.cart.read()}


# -------------------- Notifications --------------------

@app.get("/notifications", response_model=List[schemas.ToastRead])
async def drain_notifications(client: ClientSession = Depends(get_client)):
    return [schemas.ToastRead(level=t.level, message=t.message, duration_ms=t.duration_ms) for t in client.notifier.drain()]


@app.put("/notifications/permission")
async def set_notification_permission(payload: schemas.PermissionUpdate, client: ClientSession = Depends(get_client)):
    client.notifier.set_permission(payload.granted)
    return {"permission": client.notifier.permission.value}


# -------------------- Reviews --------------------

@app.post("/reviews", response_model=schemas.ReviewRead, status_code=201)
async def post_review(payload: schemas.ReviewCreate, client: ClientSession = Depends(get_client)):
    if client.user is None:
        client.notifier.error("Please login to submit a review")
        raise HTTPException(status_code=401, detail="login required")
    review = payload.model_copy(update={"comment": sanitize_input(payload.comment, max_length=1000) or None})
    try:
        created = await client.store.create_review(client.user.user_id, review)
    except StoreError as e:
        client.notifier.error("Failed to submit review")
        raise HTTPException(status_code=400, detail=str(e))
    client.notifier.success("Review submitted! Thanks for your feedback!")
    return created


# -------------------- Admin back-office --------------------

@app.get("/admin/orders", response_model=List[schemas.OrderRead])
async def admin_list_orders(status: Optional[schemas.OrderStatus] = None, db: Session = Depends(get_db), admin=Depends(require_admin)):
    return crud.list_orders(db, status=status)


@app.put("/admin/orders/{order_id}/status", response_model=schemas.OrderRead)
async def admin_update_order_status(order_id: str, payload: schemas.OrderStatusUpdate, db: Session = Depends(get_db), admin=Depends(require_admin)):
    try:
        order = crud.update_order_status(db, order_id, payload.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not order:
        raise HTTPException(status_code=404, detail="order not found")
    logger.info("admin=%s set order %s to %s", admin.id, order_id, payload.status.value)
    return order


@app.delete("/admin/orders/orphaned")
async def admin_purge_orphans(db: Session = Depends(get_db), admin=Depends(require_admin)):
    purged = crud.purge_orphaned_orders(db)
    if purged:
        logger.info("admin=%s purged %d orphaned order(s)", admin.id, len(purged))
    return {"deleted": purged}


@app.post("/admin/menu", response_model=schemas.MenuItemRead, status_code=201)
async def admin_create_menu_item(payload: schemas.MenuItemCreate, db: Session = Depends(get_db), admin=Depends(require_admin)):
    return crud.create_menu_item(db, payload)


@app.patch("/admin/menu/{item_id}", response_model=schemas.MenuItemRead)
async def admin_update_menu_item(item_id: str, payload: schemas.MenuItemUpdate, db: Session = Depends(get_db), admin=Depends(require_admin)):
    item = crud.update_menu_item(db, item_id, payload)
    if not item:
        raise HTTPException(status_code=404, detail="menu item not found")
    return item


@app.delete("/admin/menu/{item_id}")
async def admin_delete_menu_item(item_id: str, db: Session = Depends(get_db), admin=Depends(require_admin)):
    try:
        ok = crud.delete_menu_item(db, item_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not ok:
        raise HTTPException(status_code=404, detail="menu item not found")
    return {"deleted": item_id}


@app.get("/admin/users", response_model=List[schemas.UserRead])
async def admin_list_users(db: Session = Depends(get_db), admin=Depends(require_admin)):
    return [user_read(p, crud.list_roles(db, p.id)) for p in crud.list_profiles(db)]


@app.put("/admin/users/{user_id}/role", response_model=schemas.UserRead)
async def admin_set_role(user_id: str, payload: schemas.RoleUpdate, db: Session = Depends(get_db), admin=Depends(require_admin)):
    profile = crud.set_role(db, user_id, payload.role)
    if not profile:
        raise HTTPException(status_code=404, detail="user not found")
    return user_read(profile, crud.list_roles(db, profile.id))


@app.get("/admin/reviews", response_model=List[schemas.ReviewRead])
async def admin_list_reviews(db: Session = Depends(get_db), admin=Depends(require_admin)):
    return crud.list_reviews(db)


@app.delete("/admin/reviews/{review_id}")
async def admin_delete_review(review_id: int, db: Session = Depends(get_db), admin=Depends(require_admin)):
    if not crud.delete_review(db, review_id):
        raise HTTPException(status_code=404, detail="review not found")
    return {"deleted": review_id}
