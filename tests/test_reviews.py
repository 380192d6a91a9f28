from pymongo.errors import PyMongoError

from reviews import average_rating
from schemas import Review


def review(course_id=5, rating=4, date="2024-05-01T10:00:00.000000+00:00", user_id="u1"):
    return Review(
        course_id=course_id,
        user_id=user_id,
        user_name="Asha",
        rating=rating,
        comment="Clear and practical",
        date=date,
    )


def test_add_then_list_single_review(reviews):
    reviews.add_review(review(course_id=5, rating=4))

    listed = reviews.list_reviews(5)

    assert len(listed) == 1
    assert listed[0].rating == 4


def test_list_filters_by_course_newest_first(reviews):
    reviews.add_review(review(course_id=5, date="2024-05-01T10:00:00.000000+00:00", rating=2))
    reviews.add_review(review(course_id=6, date="2024-05-02T10:00:00.000000+00:00"))
    reviews.add_review(review(course_id=5, date="2024-05-03T10:00:00.000000+00:00", rating=5))

    assert [r.rating for r in reviews.list_reviews(5)] == [5, 2]


def test_same_user_may_review_twice(reviews):
    reviews.add_review(review())
    reviews.add_review(review(rating=1))
    assert len(reviews.list_reviews(5)) == 2


def test_average_rating():
    assert average_rating([review(rating=4), review(rating=2)]) == 3.0
    assert average_rating([]) == 0.0


def test_list_reviews_empty_when_store_unavailable(reviews, monkeypatch):
    def unavailable(*args, **kwargs):
        raise PyMongoError("network is unreachable")

    monkeypatch.setattr(reviews.collection, "find", unavailable)
    assert reviews.list_reviews(5) == []
