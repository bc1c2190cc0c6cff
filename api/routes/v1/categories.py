"""
api/routes/v1/categories.py -- Key category tree REST endpoints.

Routes (categories and keys are addressed by hashid):
  POST   /categories                              -- create (admin)
  GET    /categories                              -- list visible categories
  DELETE /categories                              -- delete all (admin)
  GET    /categories/{category_id}                -- one category; 403 if not visible
  PUT    /categories/{category_id}                -- rename (admin)
  DELETE /categories/{category_id}                -- delete, lifting keys/children (admin)
  GET    /categories/{category_id}/children       -- visible children
  POST   /categories/{category_id}/children       -- attach a child (admin)
  PUT    /categories/{category_id}/move           -- reparent or make root (admin)
  POST   /categories/{category_id}/groups         -- authorize a group (admin)
  DELETE /categories/{category_id}/groups/{gid}   -- revoke a group; prunes copies (admin)
  GET    /categories/{category_id}/keys           -- visible keys in the category
  POST   /categories/{category_id}/keys           -- move a key in (admin)
  DELETE /categories/{category_id}/keys/{key_id}  -- take a key out (admin)
  PUT    /categories/{category_id}/responsible    -- set or clear responsible user (admin)

Read routes are open to any authenticated user and filtered by the
visibility resolver. Everything that changes the tree is admin only.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    CategoryChildAdd,
    CategoryCreate,
    CategoryGroupAdd,
    CategoryKeyAdd,
    CategoryMove,
    CategoryResponse,
    CategoryResponsible,
    CategoryUpdate,
    KeyResponse,
)
from api.serializers import category_response, decode_id, key_response
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from services.categories import CategoryService

router = APIRouter(dependencies=[Depends(get_current_user)])


def _service(request: Request) -> CategoryService:
    return request.app.state.category_service


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    request: Request,
    body: CategoryCreate,
    current_user: User = Depends(require_admin),
) -> CategoryResponse:
    parent_id = decode_id(request, body.parent) if body.parent else None
    category = _service(request).create(current_user, body.name, parent_id)
    return category_response(request, category)


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(request: Request, current_user: User = Depends(get_current_user)) -> list[CategoryResponse]:
    return [category_response(request, c) for c in _service(request).get_all(current_user)]


@router.delete("/categories", status_code=204, dependencies=[Depends(require_admin)])
def delete_all_categories(request: Request) -> Response:
    _service(request).delete_all()
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Single category
# ---------------------------------------------------------------------------


@router.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(
    request: Request,
    category_id: str,
    current_user: User = Depends(get_current_user),
) -> CategoryResponse:
    category = _service(request).get(current_user, decode_id(request, category_id))
    if category is None:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "You are not authorized for this category."},
        )
    return category_response(request, category)


@router.put("/categories/{category_id}", response_model=CategoryResponse, dependencies=[Depends(require_admin)])
def update_category(request: Request, category_id: str, body: CategoryUpdate) -> CategoryResponse:
    return category_response(request, _service(request).update(decode_id(request, category_id), body.name))


@router.delete("/categories/{category_id}", status_code=204, dependencies=[Depends(require_admin)])
def delete_category(request: Request, category_id: str) -> Response:
    _service(request).delete(decode_id(request, category_id))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


@router.get("/categories/{category_id}/children", response_model=list[CategoryResponse])
def list_children(
    request: Request,
    category_id: str,
    current_user: User = Depends(get_current_user),
) -> list[CategoryResponse]:
    children = _service(request).children(current_user, decode_id(request, category_id))
    return [category_response(request, c) for c in children]


@router.post(
    "/categories/{category_id}/children",
    response_model=CategoryResponse,
    dependencies=[Depends(require_admin)],
)
def add_child(request: Request, category_id: str, body: CategoryChildAdd) -> CategoryResponse:
    parent = _service(request).add_child(decode_id(request, category_id), decode_id(request, body.child))
    return category_response(request, parent)


@router.put("/categories/{category_id}/move", response_model=CategoryResponse, dependencies=[Depends(require_admin)])
def move_category(request: Request, category_id: str, body: CategoryMove) -> CategoryResponse:
    """Reparent a category. A move below itself or a descendant returns 409."""
    new_parent = decode_id(request, body.parent) if body.parent else None
    return category_response(request, _service(request).move(decode_id(request, category_id), new_parent))


# ---------------------------------------------------------------------------
# Groups, keys, responsible
# ---------------------------------------------------------------------------


@router.post("/categories/{category_id}/groups", response_model=CategoryResponse, dependencies=[Depends(require_admin)])
def add_group(request: Request, category_id: str, body: CategoryGroupAdd) -> CategoryResponse:
    return category_response(request, _service(request).add_group(decode_id(request, category_id), body.group_id))


@router.delete(
    "/categories/{category_id}/groups/{group_id}",
    response_model=CategoryResponse,
    dependencies=[Depends(require_admin)],
)
def remove_group(request: Request, category_id: str, group_id: int) -> CategoryResponse:
    """Revoke a group; members who lose access lose their encrypted copies."""
    return category_response(request, _service(request).remove_group(decode_id(request, category_id), group_id))


@router.get("/categories/{category_id}/keys", response_model=list[KeyResponse])
def list_category_keys(
    request: Request,
    category_id: str,
    current_user: User = Depends(get_current_user),
) -> list[KeyResponse]:
    keys = _service(request).keys_of(current_user, decode_id(request, category_id))
    return [key_response(request, k) for k in keys]


@router.post("/categories/{category_id}/keys", response_model=CategoryResponse, dependencies=[Depends(require_admin)])
def add_key(request: Request, category_id: str, body: CategoryKeyAdd) -> CategoryResponse:
    category = _service(request).add_key(decode_id(request, category_id), decode_id(request, body.key))
    return category_response(request, category)


@router.delete(
    "/categories/{category_id}/keys/{key_id}",
    response_model=CategoryResponse,
    dependencies=[Depends(require_admin)],
)
def remove_key(request: Request, category_id: str, key_id: str) -> CategoryResponse:
    category = _service(request).remove_key(decode_id(request, category_id), decode_id(request, key_id))
    return category_response(request, category)


@router.put(
    "/categories/{category_id}/responsible",
    response_model=CategoryResponse,
    dependencies=[Depends(require_admin)],
)
def set_responsible(request: Request, category_id: str, body: CategoryResponsible) -> CategoryResponse:
    category = _service(request).set_responsible(decode_id(request, category_id), body.login)
    return category_response(request, category)
