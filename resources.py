"""Collection descriptors for tours, users and reviews, with their read-time expansions."""

from typing import Any, Dict, List

from bson import ObjectId
from pymongo.database import Database

from factory import Resource
from schemas import Review, Tour, User

ACTIVE_USERS = {"active": {"$ne": False}}
VISIBLE_TOURS = {"secretTour": {"$ne": True}}

# Repeatable in the query string; repeated values become an $in filter
TOUR_FILTER_WHITELIST = ("duration", "ratingsAverage", "ratingsQuantity", "maxGroupSize", "difficulty", "price")

USER_HIDDEN_FIELDS = ("password", "active", "passwordResetToken", "passwordResetExpires")
PASSWORD_FIELDS = ("password", "passwordConfirm", "passwordChangedAt", "passwordResetToken", "passwordResetExpires")


def tour_virtuals(doc: Dict[str, Any]) -> Dict[str, Any]:
    duration = doc.get("duration")
    if isinstance(duration, (int, float)):
        doc["durationWeeks"] = duration / 7
    return doc


def populate_review_users(db: Database, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids = list({d["user"] for d in docs if isinstance(d.get("user"), ObjectId)})
    users = {}
    if ids:
        users = {
            u["_id"]: u
            for u in db["users"].find({"_id": {"$in": ids}, **ACTIVE_USERS}, {"name": 1, "photo": 1})
        }
    for d in docs:
        if isinstance(d.get("user"), ObjectId):
            d["user"] = users.get(d["user"])
    return docs


TOURS = Resource(
    collection="tours",
    schema=Tour,
    default_filter=VISIBLE_TOURS,
    computed_fields=("ratingsAverage", "ratingsQuantity"),
    whitelist=TOUR_FILTER_WHITELIST,
    virtuals=tour_virtuals,
)

USERS = Resource(
    collection="users",
    schema=User,
    default_filter=ACTIVE_USERS,
    hidden_fields=USER_HIDDEN_FIELDS,
    read_only_fields=PASSWORD_FIELDS,
)

REVIEWS = Resource(
    collection="reviews",
    schema=Review,
    read_only_fields=("tour", "user"),
    parent=("tourId", "tour"),
    expand=populate_review_users,
)


def populate_tour(db: Database, tour: Dict[str, Any]) -> Dict[str, Any]:
    """Expand guide references and attach the tour's reviews."""
    guide_ids = [g for g in tour.get("guides") or [] if isinstance(g, ObjectId)]
    if guide_ids:
        guides = {
            g["_id"]: g
            for g in db["users"].find(
                {"_id": {"$in": guide_ids}, **ACTIVE_USERS}, {"name": 1, "email": 1, "role": 1, "photo": 1}
            )
        }
        tour["guides"] = [guides[g] for g in guide_ids if g in guides]
    reviews = list(db["reviews"].find({"tour": tour["_id"]}).sort("createdAt", -1))
    tour["reviews"] = populate_review_users(db, reviews)
    return tour
