import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import COURSES
from errors import CourseNotFoundError, ValidationError
from schemas import Course, CourseIn

logger = logging.getLogger(__name__)

DEFAULT_COURSE_IMAGE = "https://images.unsplash.com/photo-1516321318423-f06f85e504b3?auto=format&fit=crop&w=800&q=80"

SEED_COURSES: List[Course] = [
    Course(
        id=1,
        name="Full Stack Web Development",
        description="HTML, CSS, JavaScript, React and Node.js from first page to deployed app.",
        price=4999,
        image="https://images.unsplash.com/photo-1498050108023-c5249f4df085?auto=format&fit=crop&w=800&q=80",
        trailer_url="https://www.youtube.com/embed/nu_pCVPKzTk",
        instructor="Ananya Rao",
    ),
    Course(
        id=2,
        name="Python for Data Science",
        description="NumPy, pandas and matplotlib with real datasets.",
        price=3499,
        image="https://images.unsplash.com/photo-1526379095098-d400fd0bf935?auto=format&fit=crop&w=800&q=80",
        trailer_url="https://www.youtube.com/embed/LHBE6Q9XlzI",
        instructor="Rahul Mehta",
    ),
    Course(
        id=3,
        name="Intro to Go",
        description="Types, goroutines, channels and building small services in Go.",
        price=999,
        image="https://images.unsplash.com/photo-1555066931-4365d14bab8c?auto=format&fit=crop&w=800&q=80",
        instructor="Karthik Iyer",
    ),
    Course(
        id=4,
        name="Machine Learning A-Z",
        description="Regression, classification, clustering and model evaluation.",
        price=5999,
        image="https://images.unsplash.com/photo-1555949963-aa79dcee981c?auto=format&fit=crop&w=800&q=80",
        trailer_url="https://www.youtube.com/embed/GwIo3gDZCVQ",
        instructor="Priya Sharma",
    ),
    Course(
        id=5,
        name="UI/UX Design Essentials",
        description="Design thinking, wireframes and prototyping in Figma.",
        price=2499,
        image="https://images.unsplash.com/photo-1561070791-2526d30994b5?auto=format&fit=crop&w=800&q=80",
        instructor="Meera Nair",
    ),
    Course(
        id=6,
        name="Cloud Computing with AWS",
        description="EC2, S3, IAM and serverless basics for the Solutions Architect exam.",
        price=4499,
        image="https://images.unsplash.com/photo-1451187580459-43490279c0fa?auto=format&fit=crop&w=800&q=80",
        instructor="Vikram Singh",
    ),
]


def course_from_doc(doc: Dict) -> Course:
    data = dict(doc)
    data.pop("_id", None)
    data["id"] = int(data["id"])
    return Course(**data)


class CatalogService:
    """Course records in the `courses` collection, keyed by integer id."""

    def __init__(self, db: Database, seed: Optional[List[Course]] = None):
        self.collection = db[COURSES]
        self.seed = list(SEED_COURSES if seed is None else seed)

    def list_courses(self, query: Optional[str] = None) -> List[Course]:
        filter_query = {}
        if query:
            pattern = {"$regex": re.escape(query), "$options": "i"}
            filter_query["$or"] = [{"name": pattern}, {"description": pattern}]
        try:
            docs = self.collection.find(filter_query).sort("id", 1)
            return [course_from_doc(d) for d in docs]
        except PyMongoError as e:
            logger.warning("Failed to fetch courses from the database, using seed catalog: %s", e)
            courses = self.seed
            if query:
                needle = query.lower()
                courses = [c for c in courses if needle in c.name.lower() or needle in c.description.lower()]
            return list(courses)

    def get_course(self, course_id: int) -> Course:
        doc = self.collection.find_one({"_id": course_id})
        if not doc:
            raise CourseNotFoundError(course_id)
        return course_from_doc(doc)

    def _max_id(self) -> int:
        doc = self.collection.find_one({}, sort=[("id", -1)])
        return int(doc["id"]) if doc else 0

    def _build(self, course_id: int, data: CourseIn) -> Course:
        values = data.model_dump()
        values["image"] = values.get("image") or DEFAULT_COURSE_IMAGE
        return Course(id=course_id, **values)

    def add_course(self, data: CourseIn) -> Course:
        course = self._build(self._max_id() + 1, data)
        self.collection.replace_one({"_id": course.id}, course.model_dump(), upsert=True)
        logger.info("Added course %s (%s)", course.id, course.name)
        return course

    def bulk_add_courses(self, items: Iterable[CourseIn]) -> List[Course]:
        start = self._max_id() + 1
        courses = [self._build(start + i, data) for i, data in enumerate(items)]
        if not courses:
            return []
        self.collection.insert_many([dict(c.model_dump(), _id=c.id) for c in courses], ordered=True)
        logger.info("Bulk added %d courses starting at id %d", len(courses), start)
        return courses

    def update_course_price(self, course_id: int, price: float) -> None:
        if price < 0:
            raise ValidationError("Price must not be negative")
        result = self.collection.update_one({"_id": course_id}, {"$set": {"price": price}})
        if result.matched_count == 0:
            raise CourseNotFoundError(course_id)

    def delete_course(self, course_id: int) -> None:
        # Transactions keep the course name; no cascade
        result = self.collection.delete_one({"_id": course_id})
        if result.deleted_count == 0:
            raise CourseNotFoundError(course_id)
        logger.info("Deleted course %s", course_id)

    def seed_courses(self) -> None:
        for course in self.seed:
            self.collection.replace_one({"_id": course.id}, course.model_dump(), upsert=True)

    def reset_courses(self) -> None:
        self.seed_courses()
        logger.info("Catalog reset to %d seed courses", len(self.seed))

    def seed_if_empty(self) -> bool:
        if self.collection.count_documents({}) > 0:
            return False
        self.seed_courses()
        return True

    def resolve_cart(self, course_ids: Iterable[int]) -> Tuple[List[Course], float]:
        """Resolve cart course ids into courses and the cart total. Repeated ids count once."""
        seen = set()
        courses: List[Course] = []
        for course_id in course_ids:
            if course_id in seen:
                continue
            seen.add(course_id)
            courses.append(self.get_course(course_id))
        return courses, sum(c.price for c in courses)
