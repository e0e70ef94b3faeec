"""
Booking flow: validate the form, allocate a discount code, then email it.

validating -> allocating -> committing -> notifying -> done

Validation, allocation and commit failures abort the booking before anything
durable is written. Email failures happen after the commit and only downgrade
the result to a warning; the code stays with the booking.
"""
import math
import re
import uuid
import logging
from typing import List, Optional

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from allocator import (
    BookingDetails,
    CodeAllocator,
    CodeAlreadyConsumed,
    DiscountCode,
    NoCodesAvailable,
    StoreError,
)
from catalog import format_currency
from config import ALLOCATION_ATTEMPTS
from notifier import EmailError, EmailNotifier
from schemas import BookingRequest

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# Pakistani numbers, e.g. 03001234567 or +923001234567
PHONE_PATTERN = re.compile(r"^(\+92|0)?[0-9]{10}$")

CONFIRMED = "confirmed"
CONFIRMED_EMAIL_FAILED = "confirmed_email_failed"

FORM_FIELDS = ("name", "email", "phone", "testName", "testFee")


class FormValidationError(Exception):
    """`fields` lists every offending field; `missing` is the subset that was not supplied"""

    def __init__(self, fields: List[str], missing: Optional[List[str]] = None):
        super().__init__(f"Invalid booking form: {', '.join(fields)}")
        self.fields = fields
        self.missing = missing or []


class BookingFailed(Exception):
    """Booking aborted before a code was granted. `reason` is the underlying error."""

    def __init__(self, reason: Exception):
        super().__init__(str(reason))
        self.reason = reason


class Allocation(BaseModel):
    availed_id: str
    code: str


class NotificationResult(BaseModel):
    delivered: bool
    message_id: Optional[str] = None
    error_kind: Optional[str] = None


class BookingConfirmed(BaseModel):
    request_id: str
    allocation: Allocation
    notification: NotificationResult

    @property
    def status(self) -> str:
        return CONFIRMED if self.notification.delivered else CONFIRMED_EMAIL_FAILED


def validate_booking(request: BookingRequest) -> BookingRequest:
    """Return a whitespace-trimmed copy of `request` or raise FormValidationError"""
    cleaned = request.model_copy(update={
        "name": (request.name or "").strip(),
        "email": (request.email or "").strip(),
        "phone": (request.phone or "").strip(),
        "testName": (request.testName or "").strip(),
    })

    missing = [f for f in ("name", "email", "phone", "testName") if not getattr(cleaned, f)]
    if cleaned.testFee is None:
        missing.append("testFee")

    invalid = []
    if cleaned.email and not EMAIL_PATTERN.match(cleaned.email):
        invalid.append("email")
    if cleaned.phone and not PHONE_PATTERN.match(cleaned.phone):
        invalid.append("phone")
    # NaN and infinity would otherwise consume a code with an unusable fee
    if cleaned.testFee is not None and (not math.isfinite(cleaned.testFee) or cleaned.testFee <= 0):
        invalid.append("testFee")

    if missing or invalid:
        fields = [f for f in FORM_FIELDS if f in missing or f in invalid]
        raise FormValidationError(fields, missing=[f for f in FORM_FIELDS if f in missing])
    return cleaned


class BookingService:
    def __init__(self, allocator: CodeAllocator, notifier: EmailNotifier, attempts: int = ALLOCATION_ATTEMPTS):
        self.allocator = allocator
        self.notifier = notifier
        self.attempts = max(1, attempts)

    async def submit_booking(self, request: BookingRequest, request_id: Optional[str] = None) -> BookingConfirmed:
        request_id = request_id or uuid.uuid4().hex

        logger.info(f"[{request_id}] validating booking for {request.email!r}")
        try:
            form = validate_booking(request)
        except FormValidationError as e:
            logger.warning(f"[{request_id}] validation failed: {e.fields}")
            raise

        details = BookingDetails(
            name=form.name,
            email=form.email,
            phone=form.phone,
            test_name=form.testName,
            test_fee=format_currency(form.testFee),
        )

        allocation = await self._allocate(details, request_id)

        logger.info(f"[{request_id}] notifying {details.email}")
        notification = await self._notify(details, allocation.code, request_id)

        logger.info(f"[{request_id}] booking done, email delivered={notification.delivered}")
        return BookingConfirmed(request_id=request_id, allocation=allocation, notification=notification)

    async def _allocate(self, details: BookingDetails, request_id: str) -> Allocation:
        last_error = None
        for attempt in range(1, self.attempts + 1):
            logger.info(f"[{request_id}] allocating discount code (attempt {attempt})")
            try:
                code: DiscountCode = await run_in_threadpool(self.allocator.acquire_code)
            except (NoCodesAvailable, StoreError) as e:
                logger.error(f"[{request_id}] allocation failed: {e}")
                raise BookingFailed(e) from e

            logger.info(f"[{request_id}] committing code {code.doc_id}")
            try:
                availed_id = await run_in_threadpool(self.allocator.commit_allocation, code, details)
            except CodeAlreadyConsumed as e:
                logger.warning(f"[{request_id}] lost race for code {code.doc_id}, retrying")
                last_error = e
                continue
            except StoreError as e:
                logger.error(f"[{request_id}] commit failed: {e}")
                raise BookingFailed(e) from e

            return Allocation(availed_id=availed_id, code=code.code)

        logger.error(f"[{request_id}] gave up after {self.attempts} contended allocation attempts")
        raise BookingFailed(StoreError(str(last_error))) from last_error

    async def _notify(self, details: BookingDetails, code: str, request_id: str) -> NotificationResult:
        try:
            message_id = await self.notifier.send(details, code)
        except EmailError as e:
            logger.error(f"[{request_id}] confirmation email failed ({e.kind}): {e}")
            return NotificationResult(delivered=False, error_kind=e.kind)
        return NotificationResult(delivered=True, message_id=message_id)
