import itertools
from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from api_features import APIFeatures, collapse_query_params
from errors import AppError, CastError
from resources import TOUR_FILTER_WHITELIST
from schemas import Tour


def features(params, collection=None, **kwargs):
    return APIFeatures(collection, params, schema=Tour, **kwargs)


@pytest.fixture
def tours(mongo_db):
    base = datetime(2024, 1, 1)
    docs = [
        {"name": f"tour {i:02d}", "price": float(i + 1), "duration": i % 5 + 1, "createdAt": base + timedelta(minutes=i), "__v": 0}
        for i in range(25)
    ]
    mongo_db["tours"].insert_many(docs)
    return mongo_db["tours"]


def test_filter_strips_reserved_keys_and_keeps_equality():
    f = features({"difficulty": "easy", "page": "2", "sort": "price", "limit": "5", "fields": "name"}).filter()
    assert f.filters == {"difficulty": "easy"}


def test_filter_rewrites_comparison_operators():
    f = features({"price[gte]": "500", "duration[lt]": "10", "ratingsAverage[gt]": "4.5"}).filter()
    assert f.filters == {
        "price": {"$gte": 500},
        "duration": {"$lt": 10},
        "ratingsAverage": {"$gt": 4.5},
    }


def test_filter_combines_operators_on_one_field():
    f = features({"price[gte]": "100", "price[lte]": "900"}).filter()
    assert f.filters == {"price": {"$gte": 100, "$lte": 900}}


def test_filter_never_emits_unprefixed_comparison_keys():
    keys = ["price", "duration", "ratingsAverage", "maxGroupSize"]
    ops = ["gt", "gte", "lt", "lte", None]
    for key, op_a, op_b in itertools.product(keys, ops, ops):
        params = {}
        for op in (op_a, op_b):
            params[f"{key}[{op}]" if op else key] = "3"
        for condition in features(params).filter().filters.values():
            if isinstance(condition, dict):
                assert all(k.startswith("$") for k in condition)


def test_filter_rejects_unknown_operator():
    with pytest.raises(AppError) as exc:
        features({"price[ne]": "5"}).filter()
    assert exc.value.status_code == 400


def test_filter_drops_operator_and_dotted_keys():
    f = features({"$where": "sleep(1000)", "startLocation.type": "Point", "difficulty": "easy"}).filter()
    assert f.filters == {"difficulty": "easy"}


def test_filter_casts_by_schema():
    guide = ObjectId()
    f = features({"secretTour": "false", "guides": str(guide), "startDates[gte]": "2025-01-01"}).filter()
    assert f.filters["secretTour"] is False
    assert f.filters["guides"] == guide
    assert f.filters["startDates"] == {"$gte": datetime(2025, 1, 1)}


def test_filter_bad_number_is_cast_error():
    with pytest.raises(CastError) as exc:
        features({"price": "cheap"}).filter()
    assert exc.value.path == "price"


def test_filter_and_base_filter_are_combined():
    f = features({"secretTour": "true"}, base_filter={"secretTour": {"$ne": True}}).filter()
    assert f.filters == {"$and": [{"secretTour": {"$ne": True}}, {"secretTour": True}]}


def test_collapse_repeated_params():
    items = [("difficulty", "easy"), ("difficulty", "medium"), ("sort", "price"), ("sort", "-price")]
    params = collapse_query_params(items, TOUR_FILTER_WHITELIST)
    assert params == {"difficulty": ["easy", "medium"], "sort": "-price"}
    f = features(params).filter()
    assert f.filters == {"difficulty": {"$in": ["easy", "medium"]}}


def test_sort_defaults_to_newest_first():
    assert features({}).sort().sort_spec == [("createdAt", -1), ("_id", 1)]


def test_sort_parses_comma_list():
    spec = features({"sort": "price,-ratingsAverage"}).sort().sort_spec
    assert spec == [("price", 1), ("ratingsAverage", -1), ("_id", 1)]


def test_limit_fields_inclusion_and_default():
    assert features({"fields": "name,price"}).limit_fields().projection == {"name": 1, "price": 1}
    assert features({}).limit_fields().projection == {"__v": 0}
    assert features({"fields": "-summary"}).limit_fields().projection == {"summary": 0}


def test_limit_fields_never_selects_hidden_fields():
    f = APIFeatures(None, {"fields": "name,password"}, hidden_fields=("password",)).limit_fields()
    assert f.projection == {"name": 1}
    f = APIFeatures(None, {}, hidden_fields=("password",)).limit_fields()
    assert f.projection == {"__v": 0, "password": 0}


def test_limit_fields_rejects_mixed_selection():
    with pytest.raises(AppError):
        features({"fields": "name,-price"}).limit_fields()


@pytest.mark.parametrize(
    "params, skip, limit",
    [
        ({}, 0, 100),
        ({"page": "2", "limit": "10"}, 10, 10),
        ({"page": "3"}, 200, 100),
        ({"page": "0", "limit": "-5"}, 0, 100),
        ({"page": "abc", "limit": "x"}, 0, 100),
    ],
)
def test_paginate(params, skip, limit):
    f = features(params).paginate()
    assert (f.skip, f.limit) == (skip, limit)


def test_execute_second_page_in_sort_order(tours):
    docs = features({"page": "2", "limit": "10", "sort": "price"}, tours).filter().sort().limit_fields().paginate().execute()
    assert [d["price"] for d in docs] == [float(p) for p in range(11, 21)]


def test_execute_default_order_is_newest_first(tours):
    docs = features({"limit": "3"}, tours).filter().sort().limit_fields().paginate().execute()
    assert [d["name"] for d in docs] == ["tour 24", "tour 23", "tour 22"]


def test_execute_field_limiting(tours):
    docs = features({"fields": "name,price", "limit": "1"}, tours).filter().sort().limit_fields().paginate().execute()
    assert set(docs[0]) == {"_id", "name", "price"}


def test_execute_filters(tours):
    docs = features({"duration[gte]": "4", "price[lt]": "10"}, tours).filter().sort().limit_fields().paginate().execute()
    assert sorted(d["price"] for d in docs) == [4.0, 5.0, 9.0]


def test_cast_error_names_target_type():
    with pytest.raises(CastError) as exc:
        features({"secretTour": "maybe"}).filter()
    assert exc.value.kind == "bool"
    assert "Cast to bool failed" in str(exc.value)
