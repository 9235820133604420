import asyncio
import logging
import os
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.middleware.sessions import SessionMiddleware

from auth import AuthEvents, IdentityService, ProfileService, Session
from bookings import BookingManager, BookingQueries, BookingView
from catalog import VehicleCatalog, VehicleFeed
from config import Settings
from contact import ContactService
from database import ensure_indexes, get_database, utcnow
from errors import AuthError, DataError, PermissionDeniedError, RentalError
from oauth import build_oauth, callback_uri, get_client, identity_from_token
from offers import OfferService
from pricing import try_quote
from schemas import ContactMessage, CustomerInfo, Vehicle
from storage import ImageStore

settings = Settings.from_env()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("storefront")

db = get_database(settings)
oauth = build_oauth(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    feed: Optional[VehicleFeed] = None
    if db is not None:
        try:
            await run_in_threadpool(ensure_indexes, db)
        except PyMongoError as e:
            logger.warning("Could not create indexes: %s", e)
        if settings.enable_realtime:
            feed = VehicleFeed(VehicleCatalog(db))
            threading.Thread(target=feed.run, name="vehicle-feed", daemon=True).start()
    app.state.vehicle_feed = feed
    yield
    if feed is not None:
        feed.stop()


app = FastAPI(title="Vehicle Rental Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Carries OAuth state between the redirect and the callback
_https = settings.public_base_url.startswith("https://")
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    session_cookie="oauth_state",
    max_age=600,
    same_site="none" if _https else "lax",
    https_only=_https,
)


@app.exception_handler(RentalError)
async def rental_error_handler(request: Request, exc: RentalError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Dependencies
def get_settings() -> Settings:
    return settings


def get_db_handle() -> Optional[Database]:
    return db


def get_db(database: Optional[Database] = Depends(get_db_handle)) -> Database:
    if database is None:
        raise DataError("connect to database", "DATABASE_URL or DATABASE_NAME not set", status_code=503)
    return database


def get_vehicle_feed() -> Optional[VehicleFeed]:
    return getattr(app.state, "vehicle_feed", None)


def get_oauth() -> OAuth:
    return oauth


def get_clock():
    return utcnow


@dataclass
class AuthContext:
    identity: IdentityService
    profiles: ProfileService


def get_auth(database: Database = Depends(get_db), cfg: Settings = Depends(get_settings),
             clock=Depends(get_clock)):
    events = AuthEvents()
    profiles = ProfileService(database, events)
    identity = IdentityService(database, events, cfg.session_ttl_seconds, cfg.oauth_providers, clock)
    # Profile bootstrap lives exactly as long as the request
    with events.subscribe(profiles.bootstrap):
        yield AuthContext(identity=identity, profiles=profiles)


bearer = HTTPBearer(auto_error=False)


def current_session(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
                    auth: AuthContext = Depends(get_auth)) -> Session:
    return auth.identity.require_session(creds.credentials if creds else None)


def require_admin(session: Session = Depends(current_session), cfg: Settings = Depends(get_settings)) -> Session:
    if session.user.email.lower() not in cfg.admin_emails:
        raise PermissionDeniedError("Only administrators can manage vehicle images")
    return session


# Serializers
def session_out(session: Session) -> Dict[str, Any]:
    return {
        "access_token": session.access_token,
        "token_type": "bearer",
        "expires_at": session.expires_at.isoformat(),
        "user": session.user.model_dump(mode="json", exclude={"password_hash"}),
    }


def booking_view_out(view: BookingView) -> Dict[str, Any]:
    return {
        "booking": view.booking.model_dump(mode="json"),
        "vehicle": view.vehicle.model_dump(mode="json") if view.vehicle else None,
        "vehicle_name": view.vehicle_name,
        "duration_days": view.duration_days,
        "duration_months": view.duration_months,
        "duration_consistent": view.duration_consistent,
        "is_terminal": view.is_terminal,
    }


# Health
@app.get("/")
def read_root():
    return {"message": "Vehicle Rental Storefront Running"}


@app.get("/api/health")
def health(database: Optional[Database] = Depends(get_db_handle),
           feed: Optional[VehicleFeed] = Depends(get_vehicle_feed),
           cfg: Settings = Depends(get_settings)):
    """Liveness plus what the storefront depends on; never fails itself."""
    status = {
        "status": "ok",
        "database": "not configured",
        "realtime": feed is not None,
        "oauth_providers": sorted(cfg.oauth_clients),
    }
    if database is not None:
        try:
            database.list_collection_names()
            status["database"] = "connected"
        except PyMongoError as e:
            status["status"] = "degraded"
            status["database"] = f"error: {str(e)[:80]}"
    return status


# Vehicles
@app.get("/api/vehicles")
def list_vehicles(category: Optional[str] = None, database: Database = Depends(get_db)):
    return [v.model_dump(mode="json") for v in VehicleCatalog(database).list(category)]


@app.get("/api/vehicles/{vehicle_id}")
def get_vehicle(vehicle_id: str, database: Database = Depends(get_db)):
    vehicle = VehicleCatalog(database).get(vehicle_id)
    if vehicle is None:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    return vehicle.model_dump(mode="json")


@app.get("/api/vehicles/{vehicle_id}/quote")
def quote_vehicle(
    vehicle_id: str,
    pickup_date: Optional[datetime] = None,
    months: int = Query(1, description="Rental duration in months (1-12)"),
    database: Database = Depends(get_db),
):
    vehicle = VehicleCatalog(database).get(vehicle_id)
    if vehicle is None:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    quote = try_quote(vehicle.price, pickup_date, months)
    if quote is None:
        return {"ready": False}
    return {
        "ready": True,
        "monthly_rate": float(quote.monthly_rate),
        "months": quote.months,
        "days": quote.days,
        "pickup_date": quote.pickup_date.isoformat(),
        "return_date": quote.return_date.isoformat(),
        "rental_amount": float(quote.rental_amount),
        "security_deposit": float(quote.security_deposit),
        "total_due_now": float(quote.total_due_now),
    }


@app.websocket("/ws/vehicles")
async def vehicle_updates(
    websocket: WebSocket,
    category: Optional[str] = None,
    database: Optional[Database] = Depends(get_db_handle),
    feed: Optional[VehicleFeed] = Depends(get_vehicle_feed),
):
    if database is None:
        await websocket.close(code=1011)
        return
    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def push(vehicles: List[Vehicle]):
        payload = [v.model_dump(mode="json") for v in vehicles]
        loop.call_soon_threadsafe(queue.put_nowait, payload)

    async def forward():
        while True:
            await websocket.send_json(await queue.get())

    # Subscribe before the first read so no change falls in between
    subscription = feed.subscribe(push, category) if feed is not None else None
    sender: Optional[asyncio.Task] = None
    try:
        listing = await run_in_threadpool(VehicleCatalog(database).list, category)
        await websocket.send_json([v.model_dump(mode="json") for v in listing])
        sender = asyncio.create_task(forward())
        # Reading is how a disconnect is noticed while no events arrive
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Vehicle feed client disconnected")
    finally:
        if subscription is not None:
            subscription.unsubscribe()
        if sender is not None:
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)


# Bookings
class BookingIn(BaseModel):
    vehicle_id: str
    pickup_date: Optional[datetime] = None
    months: int = 1
    customer_info: CustomerInfo


@app.post("/api/bookings", status_code=201)
def create_booking(
    payload: BookingIn,
    session: Session = Depends(current_session),
    database: Database = Depends(get_db),
    cfg: Settings = Depends(get_settings),
    clock=Depends(get_clock),
):
    manager = BookingManager(database, cfg.pickup_location, clock)
    booking = manager.create_booking(
        payload.vehicle_id, session.user_id, payload.pickup_date, payload.months, payload.customer_info
    )
    return {"id": booking.id, "status": booking.status, "booking": booking.model_dump(mode="json")}


@app.get("/api/bookings")
def list_bookings(session: Session = Depends(current_session), database: Database = Depends(get_db)):
    views = BookingQueries(database).list_for_user_with_vehicles(session.user_id)
    return [booking_view_out(v) for v in views]


@app.get("/api/bookings/{booking_id}")
def get_booking(booking_id: str, session: Session = Depends(current_session),
                database: Database = Depends(get_db)):
    queries = BookingQueries(database)
    booking = queries.get(booking_id)
    if booking is None or booking.user_id != session.user_id:
        raise HTTPException(status_code=404, detail="Booking not found")
    vehicle = queries.catalog.get(booking.vehicle_id)
    return booking_view_out(queries.view(booking, vehicle))


# Auth
class SignUpIn(BaseModel):
    email: EmailStr
    password: str
    confirm_password: Optional[str] = None
    first_name: str = ""
    last_name: str = ""


class LoginIn(BaseModel):
    email: str
    password: str


@app.post("/api/auth/signup", status_code=201)
def sign_up(payload: SignUpIn, auth: AuthContext = Depends(get_auth)):
    session = auth.identity.sign_up(
        payload.email,
        payload.password,
        {"first_name": payload.first_name, "last_name": payload.last_name},
        confirm_password=payload.confirm_password,
    )
    return session_out(session)


@app.post("/api/auth/login")
def login(payload: LoginIn, auth: AuthContext = Depends(get_auth)):
    return session_out(auth.identity.sign_in_with_password(payload.email, payload.password))


@app.post("/api/auth/refresh")
def refresh(session: Session = Depends(current_session), auth: AuthContext = Depends(get_auth)):
    return session_out(auth.identity.refresh_session(session.access_token))


@app.post("/api/auth/logout")
def logout(session: Session = Depends(current_session), auth: AuthContext = Depends(get_auth)):
    auth.identity.sign_out(session.access_token)
    return {"ok": True}


@app.get("/api/auth/oauth/{provider}")
async def oauth_login(provider: str, request: Request, client_registry: OAuth = Depends(get_oauth),
                      cfg: Settings = Depends(get_settings)):
    client = get_client(client_registry, provider)
    return await client.authorize_redirect(request, callback_uri(cfg.public_base_url, provider))


@app.api_route("/api/auth/oauth/{provider}/callback", methods=["GET", "POST"])
async def oauth_callback(provider: str, request: Request, client_registry: OAuth = Depends(get_oauth),
                         auth: AuthContext = Depends(get_auth)):
    client = get_client(client_registry, provider)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError as e:
        logger.info("OAuth sign-in with %s failed: %s", provider, e.error)
        raise AuthError(f"Failed to sign in with {provider}")
    posted_user = None
    if request.method == "POST":
        posted_user = (await request.form()).get("user")
    email, claims = identity_from_token(token, posted_user)
    session = await run_in_threadpool(auth.identity.sign_in_with_oauth, provider, email, claims)
    return session_out(session)


@app.get("/api/auth/session")
def get_current_session(session: Session = Depends(current_session), auth: AuthContext = Depends(get_auth)):
    profile = auth.profiles.ensure_profile(session.user)
    return {**session_out(session), "profile": profile.model_dump(mode="json")}


class ProfileIn(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None


@app.put("/api/profile")
def update_profile(payload: ProfileIn, session: Session = Depends(current_session),
                   auth: AuthContext = Depends(get_auth)):
    profile = auth.profiles.update(session.user, payload.first_name, payload.last_name, payload.phone)
    return profile.model_dump(mode="json")


# Offers
@app.get("/api/offers")
def list_offers(active_only: bool = True, database: Database = Depends(get_db)):
    service = OfferService(database)
    offers = service.list_active() if active_only else service.list_all()
    return [o.model_dump(mode="json") for o in offers]


@app.get("/api/offers/{offer_id}")
def get_offer(offer_id: str, database: Database = Depends(get_db)):
    offer = OfferService(database).get(offer_id)
    if offer is None:
        raise HTTPException(status_code=404, detail="Offer not found")
    return offer.model_dump(mode="json")


# Contact
class ContactIn(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    phone: str
    message: str


@app.post("/api/contact", status_code=201)
def submit_contact(msg: ContactIn, database: Database = Depends(get_db)):
    saved = ContactService(database).submit(ContactMessage(**msg.model_dump()))
    return {"id": saved.id, "ok": True}


# Images
def get_image_store(database: Database = Depends(get_db), cfg: Settings = Depends(get_settings)) -> ImageStore:
    return ImageStore(database, cfg.public_base_url)


@app.get("/api/images")
def list_images(limit: int = Query(100, ge=1, le=500), store: ImageStore = Depends(get_image_store)):
    return store.list_urls(limit)


@app.get("/api/images/{name}")
def get_image(name: str, store: ImageStore = Depends(get_image_store)):
    grid_out = store.open(name)
    if grid_out is None:
        raise HTTPException(status_code=404, detail="Image not found")
    media_type = (grid_out.metadata or {}).get("contentType") or "application/octet-stream"
    return StreamingResponse(grid_out, media_type=media_type,
                             headers={"Cache-Control": "public, max-age=3600"})


@app.post("/api/images", status_code=201)
def upload_image(file: UploadFile = File(...), session: Session = Depends(require_admin),
                 store: ImageStore = Depends(get_image_store)):
    url = store.upload(file.file, file.filename or "image", file.content_type)
    return {"url": url}


@app.delete("/api/images")
def delete_image(url: str, session: Session = Depends(require_admin),
                 store: ImageStore = Depends(get_image_store)):
    return {"deleted": store.delete(url)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
