"""
Discount records kept behind an IDiscountStore.

There is no eligibility or checkout logic here, only create, list and delete.
"""
import itertools
import threading
from dataclasses import dataclass, field
from datetime import date, datetime

import zope.interface

from .errors import DiscountValidationError
from .interfaces import IDiscountStore


PERCENTAGE = "percentage"


FIXED_AMOUNT = "fixed_amount"


DISCOUNT_TYPES = (PERCENTAGE, FIXED_AMOUNT)


@dataclass
class DiscountRequest:
    code: str
    amount: float
    type: str
    start_date: date
    end_date: date

    @classmethod
    def from_json(cls, body):
        """Validate a json body that uses the client's camelCase keys."""
        if not isinstance(body, dict):
            raise DiscountValidationError("Discount must be a json object.")
        code = body.get("code")
        if not isinstance(code, str) or not code.strip():
            raise DiscountValidationError("code is required.")
        amount = body.get("amount")
        # bool is an int, but not an amount.
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise DiscountValidationError("amount must be a number.")
        if amount <= 0:
            raise DiscountValidationError("amount must be greater than zero.")
        discount_type = body.get("type")
        if discount_type not in DISCOUNT_TYPES:
            raise DiscountValidationError(
                f"type must be one of {', '.join(DISCOUNT_TYPES)}."
            )
        if discount_type == PERCENTAGE and amount > 100:
            raise DiscountValidationError("percentage amount must be at most 100.")
        start_date = parse_date(body.get("startDate"), "startDate")
        end_date = parse_date(body.get("endDate"), "endDate")
        if end_date < start_date:
            raise DiscountValidationError("endDate must not be before startDate.")
        return cls(
            code=code.strip(),
            amount=amount,
            type=discount_type,
            start_date=start_date,
            end_date=end_date,
        )


def parse_date(value, name):
    if not isinstance(value, str):
        raise DiscountValidationError(f"{name} is required.")
    try:
        # Accept both plain dates and full timestamps from the client.
        if "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return date.fromisoformat(value)
    except ValueError:
        raise DiscountValidationError(f"{name} must be an ISO-8601 date.")


@dataclass
class Discount:
    id: int
    code: str
    amount: float
    type: str
    start_date: date
    end_date: date

    @classmethod
    def from_request(cls, discount_id, discount_request):
        return cls(
            id=discount_id,
            code=discount_request.code,
            amount=discount_request.amount,
            type=discount_request.type,
            start_date=discount_request.start_date,
            end_date=discount_request.end_date,
        )

    def to_json(self):
        return {
            "id": self.id,
            "code": self.code,
            "amount": self.amount,
            "type": self.type,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
        }


@zope.interface.implementer(IDiscountStore)
@dataclass
class MemoryDiscountStore:
    """Keep discounts in process memory, ids are never reused."""

    discounts: dict = field(default_factory=dict)
    id_counter: object = field(default_factory=lambda: itertools.count(1))
    lock: object = field(default_factory=threading.Lock, repr=False)

    def create(self, discount_request):
        with self.lock:
            discount = Discount.from_request(next(self.id_counter), discount_request)
            self.discounts[discount.id] = discount
        return discount

    def list(self):
        with self.lock:
            return list(self.discounts.values())

    def delete(self, discount_id):
        with self.lock:
            return self.discounts.pop(discount_id, None) is not None
