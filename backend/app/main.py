import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.settings import settings, validate_settings
from app.db.session import SessionLocal, engine
from app.models import Base
from app.routers.admin_appointments import router as admin_appointments_router
from app.routers.appointments import router as appointments_router
from app.routers.auth import router as auth_router
from app.routers.customers import router as customers_router
from app.services.errors import BookingError
from app.services.users import seed_initial_admin

app = FastAPI(title="Booking Ledger API", version="0.1.0")
logger = logging.getLogger("booking_ledger.startup")
error_logger = logging.getLogger("booking_ledger.errors")


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    log = error_logger.error if exc.invariant_violation else error_logger.info
    log(
        "Request rejected: %s",
        exc.message,
        extra={"code": exc.code, "status_code": exc.status_code, "path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)

    admin_email = str(settings.admin_email)
    admin_password = settings.admin_password.strip()
    db: Session = SessionLocal()
    try:
        created = seed_initial_admin(db, email=admin_email, password=admin_password)
        if created:
            logger.info("Initial owner account created for %s.", admin_email)
        else:
            logger.info("Initial owner account not created (users already exist).")
    finally:
        db.close()


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(appointments_router)
app.include_router(admin_appointments_router)
app.include_router(customers_router)
