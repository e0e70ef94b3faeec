"""
Database Schemas for HelloTabeeb Lab Booking

Each Pydantic model corresponds to a MongoDB collection:
- Test -> "tests"
- DiscountCode -> "codes"
- AvailedCode -> "availedCodes"

BookingRequest is the incoming booking form and has no collection.
"""
from typing import Optional, Literal
from pydantic import BaseModel, Field
from datetime import datetime


class Test(BaseModel):
    name: str = Field(..., description="Test name as shown on the catalog")
    fee: float = Field(..., gt=0, description="Undiscounted fee in rupees")


class DiscountCode(BaseModel):
    """
    Pre-provisioned single-use code.
    isUsed is stored as a string, matching the seed data.
    """
    code: str
    isUsed: Literal["false", "true"] = "false"
    usedAt: Optional[datetime] = None


class AvailedCode(BaseModel):
    """
    A consumed code and the booking it was granted to.
    Written once, in the same transaction that flips the code's isUsed flag.
    """
    code: str
    userName: str
    userEmail: str
    userPhone: str
    testName: str = Field(..., description="Comma-joined selected test names")
    testFee: str = Field(..., description="Formatted total, e.g. Rs.800.00")
    availedAt: datetime


class BookingRequest(BaseModel):
    """
    Booking form as submitted by the client.
    Not stored; fields left out are reported as missing.
    """
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    testName: Optional[str] = Field(None, description="Comma-joined names of the selected tests")
    testFee: Optional[float] = Field(None, description="Discounted total of the selected tests")
