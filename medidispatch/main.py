import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from medidispatch.config import ALLOWED_ORIGINS, LOG_LEVEL
from medidispatch.database import close_db, init_db
from medidispatch.errors import DispatchError
from medidispatch.routers import ambulance, hospitals, notifications
from medidispatch.services.event_bus import event_bus
from medidispatch.services.notifications import NotificationDispatcher

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

notification_dispatcher = NotificationDispatcher()


def register_listeners() -> None:
    event_bus.add_listener(notification_dispatcher.handle)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting MediDispatch...")
    await init_db()
    logger.info("Database initialized")
    register_listeners()
    yield
    event_bus.remove_listener(notification_dispatcher.handle)
    await close_db()
    logger.info("MediDispatch shut down")


app = FastAPI(
    title="MediDispatch",
    description="Ambulance request dispatch: intake, staff assignment, hospital forwarding and notifications",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{field}: {message}" if field else message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # Persistence and other unexpected failures: log details, return nothing internal
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Include routers
app.include_router(ambulance.router)
app.include_router(hospitals.directory_router)
app.include_router(hospitals.router)
app.include_router(notifications.router)


@app.get("/health")
async def health():
    return {"status": "ok"}
