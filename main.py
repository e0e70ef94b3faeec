import uuid
import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from allocator import BookingDetails, CodeAllocator, NoCodesAvailable
from booking import BookingFailed, BookingService, FormValidationError
from catalog import build_catalog
from config import ENVIRONMENT, PORT, is_development, setup_logging
from notifier import RATE_LIMITED, TIMEOUT, EmailError, EmailNotifier
from schemas import BookingRequest

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="HelloTabeeb Lab Booking API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========= Dependencies =========
def get_allocator() -> CodeAllocator:
    if database.db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return CodeAllocator(database.client, database.db)


def get_notifier() -> EmailNotifier:
    return EmailNotifier()


def get_booking_service(
    allocator: CodeAllocator = Depends(get_allocator),
    notifier: EmailNotifier = Depends(get_notifier),
) -> BookingService:
    return BookingService(allocator, notifier)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    error_id = uuid.uuid4().hex
    logger.warning(f"[{error_id}] {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    return _error(exc.status_code, str(exc.detail), errorId=error_id)


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    error_id = uuid.uuid4().hex
    fields = []
    for error in exc.errors():
        field = str(error["loc"][-1]) if error.get("loc") else "body"
        if field not in fields:
            fields.append(field)
    logger.warning(f"[{error_id}] Malformed request to {request.url.path}: {fields}")
    return _error(400, "Invalid request", fields=fields, errorId=error_id)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    error_id = uuid.uuid4().hex
    logger.exception(f"[{error_id}] Unhandled error on {request.method} {request.url.path}: {exc}")
    extra = {"details": str(exc)} if is_development() else {}
    return _error(500, "Internal server error", errorId=error_id, **extra)


@app.get("/")
def read_root():
    return {"message": "HelloTabeeb Lab Booking Backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": "❌ Not Set",
        "environment": ENVIRONMENT,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = database.db.name
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ========= Tests =========
@app.get("/api/tests")
def list_tests(discount: Optional[int] = Query(None)):
    if discount is not None and discount not in (20, 30):
        raise HTTPException(status_code=400, detail="discount must be 20 or 30")
    if database.db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    items = build_catalog(database.get_documents(database.TESTS), discount)
    return {"items": [item.model_dump() for item in items]}


# ========= Bookings =========
@app.post("/api/bookings", status_code=201)
async def create_booking(payload: BookingRequest, service: BookingService = Depends(get_booking_service)):
    request_id = uuid.uuid4().hex
    try:
        result = await service.submit_booking(payload, request_id=request_id)
    except FormValidationError as e:
        return _error(400, "Invalid booking details", fields=e.fields, missingFields=e.missing, errorId=request_id)
    except BookingFailed as e:
        if isinstance(e.reason, NoCodesAvailable):
            return _error(503, "No discount codes are available right now. Please try again later.", errorId=request_id)
        return _error(503, "An error occurred during the booking process. Please try again later.", errorId=request_id)

    if result.notification.delivered:
        message = "Booking confirmed! Please check your email for details."
    else:
        message = "Booking confirmed but there was an error sending the email. Please contact support."
    return {
        "success": True,
        "status": result.status,
        "message": message,
        "code": result.allocation.code,
        "availedId": result.allocation.availed_id,
        "messageId": result.notification.message_id,
        "clearSelection": True,
    }


# ========= Email =========
EMAIL_FIELDS = ("name", "email", "phone", "testName", "testFee", "discountCode")


@app.get("/send-email")
async def send_email(
    request: Request,
    notifier: EmailNotifier = Depends(get_notifier),
):
    request_id = uuid.uuid4().hex
    params = {field: request.query_params.get(field, "").strip() for field in EMAIL_FIELDS}
    missing = [field for field, value in params.items() if not value]
    if missing:
        logger.warning(f"[{request_id}] Invalid email request, missing fields: {missing}")
        return _error(
            400,
            "Missing required fields",
            details="All fields (name, email, phone, testName, testFee, discountCode) are required",
            missingFields=missing,
        )

    logger.info(f"[{request_id}] Starting email send process for {params['email']}")
    booking = BookingDetails(
        name=params["name"],
        email=params["email"],
        phone=params["phone"],
        test_name=params["testName"],
        test_fee=params["testFee"],
    )
    try:
        message_id = await notifier.send(booking, params["discountCode"])
    except EmailError as e:
        extra = {"details": str(e)} if is_development() else {}
        if e.kind == TIMEOUT:
            return _error(504, "Email service timeout", errorId=request_id, **extra)
        if e.kind == RATE_LIMITED:
            return _error(429, "Too many requests to email service", errorId=request_id, **extra)
        return _error(e.status_code or 502, "Failed to send email", errorId=request_id, **extra)

    return {"success": True, "message": "Email sent successfully", "messageId": message_id}


# ========= Schema endpoint (for viewers/tools) =========
@app.get("/schema")
def get_schema():
    from schemas import Test, DiscountCode, AvailedCode
    return {
        "collections": [
            {"name": database.TESTS, "schema": Test.model_json_schema()},
            {"name": database.CODES, "schema": DiscountCode.model_json_schema()},
            {"name": database.AVAILED_CODES, "schema": AvailedCode.model_json_schema()},
        ]
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
