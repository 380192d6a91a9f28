import logging
from typing import Iterable, List

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import REVIEWS, create_document
from schemas import Review

logger = logging.getLogger(__name__)


def average_rating(reviews: Iterable[Review]) -> float:
    ratings = [r.rating for r in reviews]
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


class ReviewService:
    """Per-course ratings. Whether the reviewer bought the course is not checked here."""

    def __init__(self, db: Database):
        self.db = db
        self.collection = db[REVIEWS]

    def add_review(self, review: Review) -> None:
        create_document(self.db, REVIEWS, review)

    def list_reviews(self, course_id: int) -> List[Review]:
        try:
            docs = self.collection.find({"course_id": course_id}, {"_id": 0}).sort("date", DESCENDING)
            return [Review(**d) for d in docs]
        except PyMongoError as e:
            logger.warning("Could not load reviews for course %s: %s", course_id, e)
            return []
