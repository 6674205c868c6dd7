"""
Generic CRUD handlers shared by the tour, user and review routes.

A `Resource` describes one collection. The service functions (`find_all`,
`find_one`, `create`, `update`, `delete`) do the persistence work and return
raw documents; the handler builders (`get_all`, `get_one`, `create_one`,
`update_one`, `delete_one`) wrap them as FastAPI endpoints producing the
standard `{"status": "success", "data": ...}` envelope. Persistence and
validation errors are left to propagate to the error handlers.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from fastapi import Body, Depends, Request, Response
from pymongo import ReturnDocument
from pymongo.database import Database

from api_features import APIFeatures, collapse_query_params
from database import get_db, serialize_doc, to_object_id
from errors import AppError
from schemas import Document

Populate = Callable[[Database, Dict[str, Any]], Dict[str, Any]]
Expand = Callable[[Database, List[Dict[str, Any]]], List[Dict[str, Any]]]


@dataclass
class Resource:
    collection: str
    schema: Type[Document]
    default_filter: Dict[str, Any] = field(default_factory=dict)
    hidden_fields: Tuple[str, ...] = ()
    read_only_fields: Tuple[str, ...] = ()
    # maintained by the server; dropped from create payloads, refused on update
    computed_fields: Tuple[str, ...] = ()
    # (path parameter, stored field) for nested routes such as /tours/{tourId}/reviews
    parent: Optional[Tuple[str, str]] = None
    whitelist: Tuple[str, ...] = ()
    virtuals: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
    expand: Optional[Expand] = None

    def hidden_projection(self) -> Optional[Dict[str, int]]:
        return {f: 0 for f in self.hidden_fields} or None


def not_found() -> AppError:
    return AppError("No document found with that ID", 404)


def present(resource: Resource, doc: Dict[str, Any]) -> Dict[str, Any]:
    d = {k: v for k, v in doc.items() if k not in resource.hidden_fields}
    if resource.virtuals:
        d = resource.virtuals(d)
    return serialize_doc(d)


def _expand(db: Database, resource: Resource, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return resource.expand(db, docs) if resource.expand else docs


def find_all(
    db: Database,
    resource: Resource,
    query_params: Dict[str, Any],
    parent_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    base_filter = dict(resource.default_filter)
    if parent_id is not None and resource.parent:
        parent_field = resource.parent[1]
        base_filter[parent_field] = to_object_id(parent_id, parent_field)
    features = (
        APIFeatures(db[resource.collection], query_params, base_filter, resource.schema, resource.hidden_fields)
        .filter()
        .sort()
        .limit_fields()
        .paginate()
    )
    return _expand(db, resource, features.execute())


def find_one(db: Database, resource: Resource, id: Any, populate: Optional[Populate] = None) -> Dict[str, Any]:
    doc = db[resource.collection].find_one(
        {"_id": to_object_id(id), **resource.default_filter}, resource.hidden_projection()
    )
    if doc is None:
        raise not_found()
    doc = _expand(db, resource, [doc])[0]
    if populate:
        doc = populate(db, doc)
    return doc


def create(db: Database, resource: Resource, payload: Dict[str, Any]) -> Dict[str, Any]:
    doc = resource.schema.model_validate(payload).to_document()
    doc["__v"] = 0
    result = db[resource.collection].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def update(db: Database, resource: Resource, id: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Apply a partial update, validating the merged document against the schema."""
    blocked = [f for f in payload if f in resource.read_only_fields or f in resource.computed_fields]
    if blocked:
        raise AppError(f"This route cannot update: {', '.join(blocked)}", 400)

    oid = to_object_id(id)
    collection = db[resource.collection]
    current = collection.find_one({"_id": oid, **resource.default_filter})
    if current is None:
        raise not_found()

    merged = {k: v for k, v in current.items() if k not in ("_id", "__v")}
    merged.update(payload)
    validated = resource.schema.model_validate(merged).to_document()
    changes = {k: v for k, v in validated.items() if k not in current or current[k] != v}

    operation: Dict[str, Any] = {"$inc": {"__v": 1}}
    if changes:
        operation["$set"] = changes
    updated = collection.find_one_and_update(
        {"_id": oid},
        operation,
        projection=resource.hidden_projection(),
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise not_found()
    return updated


def delete(db: Database, resource: Resource, id: Any) -> Dict[str, Any]:
    doc = db[resource.collection].find_one_and_delete({"_id": to_object_id(id), **resource.default_filter})
    if doc is None:
        raise not_found()
    return doc


def list_response(resource: Resource, docs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "status": "success",
        "results": len(docs),
        "data": {"data": [present(resource, d) for d in docs]},
    }


def doc_response(resource: Resource, doc: Dict[str, Any]) -> Dict[str, Any]:
    return {"status": "success", "data": {"data": present(resource, doc)}}


# Handler builders

def get_all(resource: Resource):
    def handler(request: Request, db: Database = Depends(get_db)):
        params = collapse_query_params(request.query_params.multi_items(), resource.whitelist)
        parent_id = request.path_params.get(resource.parent[0]) if resource.parent else None
        return list_response(resource, find_all(db, resource, params, parent_id))

    return handler


def get_one(resource: Resource, populate: Optional[Populate] = None):
    def handler(id: str, db: Database = Depends(get_db)):
        return doc_response(resource, find_one(db, resource, id, populate))

    return handler


def create_one(resource: Resource):
    def handler(payload: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
        payload = {k: v for k, v in payload.items() if k not in resource.computed_fields}
        return doc_response(resource, create(db, resource, payload))

    return handler


def update_one(resource: Resource):
    def handler(id: str, payload: Dict[str, Any] = Body(...), db: Database = Depends(get_db)):
        return doc_response(resource, update(db, resource, id, payload))

    return handler


def delete_one(resource: Resource):
    def handler(id: str, db: Database = Depends(get_db)):
        delete(db, resource, id)
        return Response(status_code=204)

    return handler
