from datetime import datetime
from typing import Tuple

from fastapi import APIRouter, Depends, Response
from pymongo.database import Database

import factory
from auth import restrict_to
from database import get_db, serialize_doc
from errors import AppError
from resources import TOURS, VISIBLE_TOURS, populate_tour

router = APIRouter()

# unit -> (earth radius, metres-to-unit multiplier)
UNITS = {
    "mi": (3963.2, 0.000621371),
    "km": (6378.1, 0.001),
}

TOP_CHEAP_ALIAS = {
    "limit": "5",
    "sort": "-ratingsAverage,price",
    "fields": "name,price,ratingsAverage,summary,difficulty",
}


def parse_latlng(latlng: str) -> Tuple[float, float]:
    parts = latlng.split(",")
    try:
        lat, lng = (float(p) for p in parts)
    except ValueError:
        raise AppError("Please provide latitude and longitude in the format lat,lng.", 400)
    return lat, lng


def unit_constants(unit: str) -> Tuple[float, float]:
    if unit not in UNITS:
        raise AppError("Unit must be either 'mi' or 'km'.", 400)
    return UNITS[unit]


@router.get("/top-5-cheap")
def top_five_cheap(db: Database = Depends(get_db)):
    return factory.list_response(TOURS, factory.find_all(db, TOURS, TOP_CHEAP_ALIAS))


@router.get("/tour-stats")
def tour_stats(db: Database = Depends(get_db)):
    stats = list(
        db["tours"].aggregate(
            [
                {"$match": {"ratingsAverage": {"$gte": 4.5}, **VISIBLE_TOURS}},
                {
                    "$group": {
                        "_id": "$difficulty",
                        "numTours": {"$sum": 1},
                        "numRatings": {"$sum": "$ratingsQuantity"},
                        "avgRating": {"$avg": "$ratingsAverage"},
                        "avgPrice": {"$avg": "$price"},
                        "minPrice": {"$min": "$price"},
                        "maxPrice": {"$max": "$price"},
                    }
                },
                {"$sort": {"avgPrice": 1}},
            ]
        )
    )
    return {"status": "success", "data": {"stats": stats}}


@router.get("/monthly-plan/{year}", dependencies=[Depends(restrict_to("admin", "lead-guide", "guide"))])
def monthly_plan(year: int, db: Database = Depends(get_db)):
    plan = list(
        db["tours"].aggregate(
            [
                {"$match": VISIBLE_TOURS},
                {"$unwind": "$startDates"},
                {"$match": {"startDates": {"$gte": datetime(year, 1, 1), "$lt": datetime(year + 1, 1, 1)}}},
                {"$group": {"_id": {"$month": "$startDates"}, "numTourStarts": {"$sum": 1}, "tours": {"$push": "$name"}}},
                {"$addFields": {"month": "$_id"}},
                {"$project": {"_id": 0}},
                {"$sort": {"numTourStarts": -1, "month": 1}},
                {"$limit": 12},
            ]
        )
    )
    return {"status": "success", "data": {"plan": plan}}


@router.get("/tours-within/{distance}/center/{latlng}/unit/{unit}")
def tours_within(distance: float, latlng: str, unit: str, db: Database = Depends(get_db)):
    lat, lng = parse_latlng(latlng)
    earth_radius, _ = unit_constants(unit)
    radius = distance / earth_radius
    tours = list(
        db["tours"].find(
            {"startLocation": {"$geoWithin": {"$centerSphere": [[lng, lat], radius]}}, **VISIBLE_TOURS}
        )
    )
    return factory.list_response(TOURS, tours)


@router.get("/distances/{latlng}/unit/{unit}")
def distances(latlng: str, unit: str, db: Database = Depends(get_db)):
    lat, lng = parse_latlng(latlng)
    _, multiplier = unit_constants(unit)
    # $geoNear must be the first stage
    results = list(
        db["tours"].aggregate(
            [
                {
                    "$geoNear": {
                        "near": {"type": "Point", "coordinates": [lng, lat]},
                        "distanceField": "distance",
                        "distanceMultiplier": multiplier,
                        "query": VISIBLE_TOURS,
                    }
                },
                {"$project": {"distance": 1, "name": 1}},
            ]
        )
    )
    return {"status": "success", "data": {"data": [serialize_doc(r) for r in results]}}


def delete_tour(id: str, db: Database = Depends(get_db)):
    tour = factory.delete(db, TOURS, id)
    # a review always belongs to an existing tour
    db["reviews"].delete_many({"tour": tour["_id"]})
    return Response(status_code=204)


tour_editors = [Depends(restrict_to("admin", "lead-guide"))]

router.add_api_route("", factory.get_all(TOURS), methods=["GET"])
router.add_api_route("", factory.create_one(TOURS), methods=["POST"], status_code=201, dependencies=tour_editors)
router.add_api_route("/{id}", factory.get_one(TOURS, populate=populate_tour), methods=["GET"])
router.add_api_route("/{id}", factory.update_one(TOURS), methods=["PATCH"], dependencies=tour_editors)
router.add_api_route("/{id}", delete_tour, methods=["DELETE"], status_code=204, dependencies=tour_editors)
