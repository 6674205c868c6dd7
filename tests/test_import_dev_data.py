import json

from import_dev_data import DEFAULT_FILE, delete_data, import_tours


def test_import_sample_tours(mongo_db):
    tours = json.loads(DEFAULT_FILE.read_text(encoding="utf-8"))
    assert import_tours(mongo_db, tours) == len(tours)

    stored = mongo_db["tours"].find_one({"name": "The Forest Hiker"})
    assert stored["slug"] == "the-forest-hiker"
    assert stored["__v"] == 0
    assert stored["startDates"][0].tzinfo is None


def test_delete_data(mongo_db, make_user, make_tour):
    make_user()
    make_tour()
    delete_data(mongo_db)
    for name in ("tours", "users", "reviews"):
        assert mongo_db[name].count_documents({}) == 0
