"""
Order/transaction lifecycle.

Transactions are created already `Confirmed`: the payer supplies a payment
reference at checkout and that reference is the only proof of payment, so it
must be unique across all transactions. Uniqueness is checked before the
insert and enforced by the unique index on `transaction_id`.
"""

import logging
from collections import defaultdict
from typing import Dict, List

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from catalog import CatalogService
from database import TRANSACTIONS, iso_now
from errors import DuplicateReferenceError, TransactionNotFoundError, ValidationError
from schemas import Course, CourseRevenue, OrderStatus, SalesSummary, Transaction, TransactionDraft

logger = logging.getLogger(__name__)

TOP_COURSES_LIMIT = 5


def transaction_from_doc(doc: Dict) -> Transaction:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return Transaction(**data)


class OrderService:
    def __init__(self, db: Database, catalog: CatalogService):
        self.collection = db[TRANSACTIONS]
        self.catalog = catalog

    def create_transaction(self, draft: TransactionDraft) -> Transaction:
        reference = draft.transaction_id.strip()
        if not reference:
            raise ValidationError("Transaction ID is required")

        if self.collection.find_one({"transaction_id": reference}, {"_id": 1}):
            raise DuplicateReferenceError(reference)

        doc = draft.model_dump(mode="json")
        doc.update({
            "transaction_id": reference,
            "status": OrderStatus.CONFIRMED.value,
            "timestamp": iso_now(),
        })
        try:
            inserted_id = self.collection.insert_one(doc).inserted_id
        except DuplicateKeyError:
            # Lost the race to a concurrent checkout with the same reference
            raise DuplicateReferenceError(reference)
        doc["_id"] = inserted_id
        logger.info("Transaction %s confirmed for %s", reference, draft.payer_email)
        return transaction_from_doc(doc)

    def list_transactions(self) -> List[Transaction]:
        docs = self.collection.find().sort("timestamp", DESCENDING)
        return [transaction_from_doc(d) for d in docs]

    def confirm_transaction(self, transaction_id: str) -> None:
        try:
            oid = ObjectId(transaction_id)
        except (InvalidId, TypeError):
            raise TransactionNotFoundError(transaction_id)
        result = self.collection.update_one({"_id": oid}, {"$set": {"status": OrderStatus.CONFIRMED.value}})
        if result.matched_count == 0:
            raise TransactionNotFoundError(transaction_id)

    def _confirmed_for(self, user_id: str) -> List[Transaction]:
        docs = self.collection.find(
            {"user_id": user_id, "status": OrderStatus.CONFIRMED.value}
        ).sort("timestamp", DESCENDING)
        return [transaction_from_doc(d) for d in docs]

    def has_purchased(self, user_id: str, course_name: str) -> bool:
        try:
            doc = self.collection.find_one(
                {"user_id": user_id, "status": OrderStatus.CONFIRMED.value, "courses": course_name},
                {"_id": 1},
            )
        except PyMongoError as e:
            logger.warning("Could not check purchase of %r for %s: %s", course_name, user_id, e)
            return False
        return doc is not None

    def purchased_courses(self, user_id: str) -> List[Course]:
        """Courses bought by the user, matched to the current catalog by name."""
        try:
            names = set()
            for tx in self._confirmed_for(user_id):
                names.update(tx.courses)
            courses = self.catalog.list_courses()
        except PyMongoError as e:
            logger.error("Error getting purchased courses for %s: %s", user_id, e)
            return []
        return [c for c in courses if c.name in names]

    def sales_summary(self) -> SalesSummary:
        transactions = self.list_transactions()
        total_revenue = sum(tx.total_amount for tx in transactions)
        total_orders = len(transactions)

        per_course: Dict[str, float] = defaultdict(float)
        for tx in transactions:
            if not tx.courses:
                continue
            share = tx.total_amount / len(tx.courses)
            for name in tx.courses:
                per_course[name] += share
        top = sorted(per_course.items(), key=lambda item: item[1], reverse=True)[:TOP_COURSES_LIMIT]

        return SalesSummary(
            total_revenue=round(total_revenue, 2),
            total_orders=total_orders,
            average_order_value=round(total_revenue / total_orders, 2) if total_orders else 0.0,
            top_courses=[CourseRevenue(name=name, revenue=round(value, 2)) for name, value in top],
        )
