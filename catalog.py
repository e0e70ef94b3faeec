"""
Lab test catalog: discount tiers, prices and the client-held selection.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from schemas import BookingRequest

TWENTY_PERCENT = 0.2
THIRTY_PERCENT = 0.3

THIRTY_PERCENT_TESTS = {
    "Lipid Profile",
    "Serum 25-OH Vitamin D",
    "Glycosylated Hemoglobin (HbA1c)",
}


class CatalogTest(BaseModel):
    id: str
    name: str
    fee: float
    discount: int = Field(..., description="Discount tier in percent, 20 or 30")
    discounted_fee: float


def discount_rate(test_name: str) -> float:
    return THIRTY_PERCENT if test_name in THIRTY_PERCENT_TESTS else TWENTY_PERCENT


def discounted_fee(fee: float, test_name: str) -> float:
    return round(fee * (1 - discount_rate(test_name)), 2)


def format_currency(amount) -> str:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        value = 0.0
    if value != value:  # NaN
        value = 0.0
    return f"Rs.{value:.2f}"


def _sort_key(name: str):
    # Names starting with a letter come before digits and symbols
    return (0 if name[:1].isalpha() else 1, name.lower())


def build_catalog(documents: List[dict], discount: Optional[int] = None) -> List[CatalogTest]:
    """
    Turn raw `tests` documents into priced catalog entries.

    Documents may carry either `name`/`fee` or the seed spelling `Name`/`Fees`;
    entries missing a name or a fee are skipped. When `discount` is given only
    tests in that tier (20 or 30) are returned.
    """
    items = []
    for doc in documents:
        name = doc.get("name") or doc.get("Name")
        fee = doc.get("fee", doc.get("Fees"))
        if not name or fee in (None, ""):
            continue
        try:
            fee = float(fee)
        except (TypeError, ValueError):
            continue
        tier = int(round(discount_rate(name) * 100))
        if discount is not None and tier != discount:
            continue
        items.append(CatalogTest(
            id=str(doc.get("_id", doc.get("id", name))),
            name=name,
            fee=fee,
            discount=tier,
            discounted_fee=discounted_fee(fee, name),
        ))
    items.sort(key=lambda t: _sort_key(t.name))
    return items


class SelectedTest(BaseModel):
    id: str
    name: str
    fee: float = Field(..., description="Discounted fee")


class Selection(BaseModel):
    """
    Tests picked by one user in one session.

    Owned by the caller and passed by value into a booking request;
    never shared between requests.
    """
    tests: List[SelectedTest] = Field(default_factory=list)

    def add(self, test: CatalogTest) -> bool:
        if any(t.id == test.id for t in self.tests):
            return False
        self.tests.append(SelectedTest(id=test.id, name=test.name, fee=test.discounted_fee))
        return True

    def remove(self, test_id: str) -> bool:
        before = len(self.tests)
        self.tests = [t for t in self.tests if t.id != test_id]
        return len(self.tests) != before

    def clear(self):
        self.tests = []

    @property
    def total(self) -> float:
        return round(sum(t.fee for t in self.tests), 2)

    def test_names(self) -> str:
        return ", ".join(t.name for t in self.tests)

    def to_request(self, name: str, email: str, phone: str) -> BookingRequest:
        return BookingRequest(
            name=name,
            email=email,
            phone=phone,
            testName=self.test_names(),
            testFee=self.total,
        )
