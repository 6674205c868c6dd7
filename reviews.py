"""
Review routes.

Reviews are mounted twice: at /api/v1/reviews and nested under
/api/v1/tours/{tourId}/reviews, where listing is scoped to the tour and new
reviews default to it. Every write is followed by `calc_average_ratings` for
the affected tour; the recompute is a separate step, so a failure between the
two leaves the tour's rating stale until the next review write.
"""

import logging
from typing import Any, Dict

from bson import ObjectId
from fastapi import APIRouter, Body, Depends, Request, Response
from pymongo.database import Database

import factory
from auth import protect, restrict_to
from database import get_db, to_object_id
from errors import AppError
from resources import REVIEWS

logger = logging.getLogger(__name__)

DEFAULT_RATINGS_AVERAGE = 4.5

router = APIRouter(dependencies=[Depends(protect)])
nested_router = APIRouter(dependencies=[Depends(protect)])


def calc_average_ratings(db: Database, tour_id: ObjectId) -> Dict[str, Any]:
    stats = list(
        db["reviews"].aggregate(
            [
                {"$match": {"tour": tour_id}},
                {"$group": {"_id": "$tour", "nRating": {"$sum": 1}, "avgRating": {"$avg": "$rating"}}},
            ]
        )
    )
    if stats:
        ratings = {"ratingsQuantity": stats[0]["nRating"], "ratingsAverage": stats[0]["avgRating"]}
    else:
        ratings = {"ratingsQuantity": 0, "ratingsAverage": DEFAULT_RATINGS_AVERAGE}
    db["tours"].update_one({"_id": tour_id}, {"$set": ratings})
    logger.debug("Tour %s ratings recomputed: %s", tour_id, ratings)
    return ratings


def create_review(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    current_user: Dict[str, Any] = Depends(restrict_to("user")),
    db: Database = Depends(get_db),
):
    payload = dict(payload)
    if not payload.get("tour") and "tourId" in request.path_params:
        payload["tour"] = request.path_params["tourId"]
    payload["user"] = current_user["_id"]

    if payload.get("tour") is not None:
        tour_id = to_object_id(payload["tour"], "tour")
        if db["tours"].find_one({"_id": tour_id}, {"_id": 1}) is None:
            raise AppError("No tour found with that ID", 404)

    review = factory.create(db, REVIEWS, payload)
    calc_average_ratings(db, review["tour"])
    return factory.doc_response(REVIEWS, review)


def update_review(id: str, payload: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
    review = factory.update(db, REVIEWS, id, payload)
    calc_average_ratings(db, review["tour"])
    return factory.doc_response(REVIEWS, review)


def delete_review(id: str, db: Database = Depends(get_db)):
    review = factory.delete(db, REVIEWS, id)
    calc_average_ratings(db, review["tour"])
    return Response(status_code=204)


review_authors = [Depends(restrict_to("user", "admin"))]

for r in (router, nested_router):
    r.add_api_route("", factory.get_all(REVIEWS), methods=["GET"])
    r.add_api_route("", create_review, methods=["POST"], status_code=201)

router.add_api_route("/{id}", factory.get_one(REVIEWS), methods=["GET"])
router.add_api_route("/{id}", update_review, methods=["PATCH"], dependencies=review_authors)
router.add_api_route("/{id}", delete_review, methods=["DELETE"], status_code=204, dependencies=review_authors)
