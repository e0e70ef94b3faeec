"""
Discount code allocation.

A code is handed out in two steps: `acquire_code` picks any unused code without
touching it, and `commit_allocation` consumes it and records the booking inside
one MongoDB transaction. The flag flip is conditional on the code still being
unused, so two bookings that raced to the same code cannot both commit.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from pymongo.errors import PyMongoError

from database import CODES, AVAILED_CODES
from schemas import AvailedCode

logger = logging.getLogger(__name__)

UNUSED = "false"
USED = "true"


class NoCodesAvailable(Exception):
    """The pool of unused discount codes is empty"""


class StoreError(Exception):
    """The document store failed or rejected a write"""


class CodeAlreadyConsumed(StoreError):
    """The code was consumed by another booking between acquire and commit"""

    def __init__(self, doc_id):
        super().__init__(f"Discount code {doc_id} is no longer available")
        self.doc_id = doc_id


class DiscountCode(BaseModel):
    doc_id: Any
    code: str


class BookingDetails(BaseModel):
    name: str
    email: str
    phone: str
    test_name: str
    test_fee: str


class CodeAllocator:
    def __init__(self, client, db):
        self.client = client
        self.db = db

    def acquire_code(self) -> DiscountCode:
        try:
            doc = self.db[CODES].find_one({"isUsed": UNUSED})
        except PyMongoError as e:
            logger.error(f"Failed to query unused codes: {e}")
            raise StoreError("Could not read discount codes") from e

        if doc is None:
            logger.warning("No unused discount codes available")
            raise NoCodesAvailable("No discount codes available")

        logger.debug(f"Acquired discount code {doc['_id']}")
        return DiscountCode(doc_id=doc["_id"], code=doc["code"])

    def commit_allocation(self, code: DiscountCode, booking: BookingDetails) -> str:
        """
        Consume `code` and record `booking` atomically.

        Returns the id of the new availedCodes document. Raises
        CodeAlreadyConsumed when the code is no longer unused, StoreError for
        any other store failure; in both cases nothing is written.
        """
        now = datetime.now(timezone.utc)
        record = AvailedCode(
            code=code.code,
            userName=booking.name,
            userEmail=booking.email,
            userPhone=booking.phone,
            testName=booking.test_name,
            testFee=booking.test_fee,
            availedAt=now,
        )

        def consume(session):
            result = self.db[CODES].update_one(
                {"_id": code.doc_id, "isUsed": UNUSED},
                {"$set": {"isUsed": USED, "usedAt": now}},
                session=session,
            )
            if result.modified_count != 1:
                raise CodeAlreadyConsumed(code.doc_id)
            inserted = self.db[AVAILED_CODES].insert_one(record.model_dump(), session=session)
            return str(inserted.inserted_id)

        try:
            with self.client.start_session() as session:
                availed_id = session.with_transaction(consume)
        except CodeAlreadyConsumed:
            logger.warning(f"Discount code {code.doc_id} was consumed concurrently")
            raise
        except PyMongoError as e:
            logger.error(f"Allocation commit failed for code {code.doc_id}: {e}")
            raise StoreError("Could not record the booking") from e

        logger.info(f"Discount code {code.doc_id} consumed, availed record {availed_id}")
        return availed_id
