from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Response
from pymongo.database import Database

import factory
from auth import protect, restrict_to
from database import get_db
from errors import AppError
from resources import USERS

router = APIRouter()

SELF_EDITABLE_FIELDS = ("name", "email", "photo")


@router.get("/me")
def get_me(current_user: Dict[str, Any] = Depends(protect), db: Database = Depends(get_db)):
    return factory.doc_response(USERS, factory.find_one(db, USERS, current_user["_id"]))


@router.patch("/update-me")
def update_me(
    payload: Dict[str, Any] = Body(...),
    current_user: Dict[str, Any] = Depends(protect),
    db: Database = Depends(get_db),
):
    if "password" in payload or "passwordConfirm" in payload:
        raise AppError("This route is not for password updates. Please use /update-my-password.", 400)

    changes = {k: payload[k] for k in SELF_EDITABLE_FIELDS if k in payload}
    user = factory.update(db, USERS, current_user["_id"], changes)
    return {"status": "success", "data": {"user": factory.present(USERS, user)}}


@router.delete("/delete-me", status_code=204)
def delete_me(current_user: Dict[str, Any] = Depends(protect), db: Database = Depends(get_db)):
    db["users"].update_one({"_id": current_user["_id"]}, {"$set": {"active": False}})
    return Response(status_code=204)


admin_only = [Depends(restrict_to("admin"))]

router.add_api_route("", factory.get_all(USERS), methods=["GET"], dependencies=admin_only)
router.add_api_route("/{id}", factory.get_one(USERS), methods=["GET"], dependencies=admin_only)
router.add_api_route("/{id}", factory.update_one(USERS), methods=["PATCH"], dependencies=admin_only)
router.add_api_route("/{id}", factory.delete_one(USERS), methods=["DELETE"], status_code=204, dependencies=admin_only)
