import pytest
from fastapi.testclient import TestClient
from jose import ExpiredSignatureError, JWTError
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

from config import Settings
from errors import AppError, CastError, GENERIC_MESSAGE, error_body, translate_error
from schemas import Tour


def test_app_error_status_class():
    assert AppError("missing", 404).status == "fail"
    assert AppError("boom", 500).status == "error"


def test_cast_error():
    error = translate_error(CastError("_id", "abc"))
    assert (error.status_code, error.message) == (400, "Invalid _id: abc.")


def test_duplicate_key_with_key_value():
    exc = DuplicateKeyError("E11000 duplicate key error", 11000, {"keyValue": {"name": "The Forest Hiker"}})
    error = translate_error(exc)
    assert error.status_code == 400
    assert error.message == "Duplicate field value: The Forest Hiker. Please use another value!"


def test_duplicate_key_from_message():
    exc = DuplicateKeyError('E11000 duplicate key error collection: natours.tours index: name_1 dup key: { name: "The Sea Explorer" }', 11000)
    error = translate_error(exc)
    assert error.message == 'Duplicate field value: "The Sea Explorer". Please use another value!'


def test_validation_error_lists_fields():
    with pytest.raises(ValidationError) as exc:
        Tour.model_validate({"name": "Tiny", "duration": 3, "maxGroupSize": 5, "difficulty": "extreme",
                             "price": 100, "summary": "s", "imageCover": "c.jpg"})
    error = translate_error(exc.value)
    assert error.status_code == 400
    assert error.message.startswith("Invalid input data.")
    assert {e["field"] for e in error.errors} == {"name", "difficulty"}


def test_token_errors():
    expired = translate_error(ExpiredSignatureError("Signature has expired."))
    assert (expired.status_code, expired.message) == (401, "Your token has expired! Please log in again.")
    invalid = translate_error(JWTError("bad"))
    assert (invalid.status_code, invalid.message) == (401, "Invalid token. Please log in again!")


def test_unclassified_error_is_hidden_in_production():
    exc = RuntimeError("database password is hunter2")
    error = translate_error(exc)
    assert error.status_code == 500
    assert not error.is_operational
    assert error_body(error, exc, Settings(env="production")) == {"status": "error", "message": GENERIC_MESSAGE}

    dev = error_body(error, exc, Settings(env="development"))
    assert dev["message"] == "database password is hunter2"
    assert "stack" in dev


def test_operational_error_shown_in_production():
    error = AppError("No document found with that ID", 404)
    assert error_body(error, error, Settings(env="production")) == {
        "status": "fail",
        "message": "No document found with that ID",
    }


def test_unknown_route(client):
    res = client.get("/api/v1/nowhere")
    assert res.status_code == 404
    assert res.json()["message"] == "Can't find /api/v1/nowhere on this server!"
    assert res.json()["status"] == "fail"


def test_malformed_id(client):
    res = client.get("/api/v1/tours/not-an-id")
    assert res.status_code == 400
    assert res.json()["message"] == "Invalid _id: not-an-id."


def test_unhandled_exception_in_production(app):
    app.state.settings = Settings(env="production")

    @app.get("/api/v1/boom")
    def boom():
        raise RuntimeError("internal detail")

    res = TestClient(app, raise_server_exceptions=False).get("/api/v1/boom")
    assert res.status_code == 500
    assert res.json() == {"status": "error", "message": GENERIC_MESSAGE}
