"""
api/routes/v1/groups.py -- User group REST endpoints (admin only).

Routes:
  POST   /groups                          -- create group
  GET    /groups                          -- list groups
  DELETE /groups                          -- delete every group
  GET    /groups/{group_id}               -- one group
  PUT    /groups/{group_id}               -- rename
  DELETE /groups/{group_id}               -- delete; members' copies are pruned
  GET    /groups/{group_id}/users         -- member logins
  POST   /groups/{group_id}/users         -- add a member by login
  DELETE /groups/{group_id}/users/{login} -- remove a member; prunes their copies
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import GroupCreate, GroupMemberAdd, GroupResponse
from api.serializers import group_response
from auth.dependencies import require_admin
from services.groups import GroupService

router = APIRouter(dependencies=[Depends(require_admin)])


def _service(request: Request) -> GroupService:
    return request.app.state.group_service


@router.post("/groups", response_model=GroupResponse, status_code=201)
def create_group(request: Request, body: GroupCreate) -> GroupResponse:
    return group_response(request, _service(request).create(body.name))


@router.get("/groups", response_model=list[GroupResponse])
def list_groups(request: Request) -> list[GroupResponse]:
    return [group_response(request, g) for g in _service(request).get_all()]


@router.delete("/groups", status_code=204)
def delete_all_groups(request: Request) -> Response:
    _service(request).delete_all()
    return Response(status_code=204)


@router.get("/groups/{group_id}", response_model=GroupResponse)
def get_group(request: Request, group_id: int) -> GroupResponse:
    return group_response(request, _service(request).get(group_id))


@router.put("/groups/{group_id}", response_model=GroupResponse)
def rename_group(request: Request, group_id: int, body: GroupCreate) -> GroupResponse:
    return group_response(request, _service(request).rename(group_id, body.name))


@router.delete("/groups/{group_id}", status_code=204)
def delete_group(request: Request, group_id: int) -> Response:
    _service(request).delete(group_id)
    return Response(status_code=204)


@router.get("/groups/{group_id}/users", response_model=list[str])
def list_members(request: Request, group_id: int) -> list[str]:
    return [u.login for u in _service(request).members(group_id)]


@router.post("/groups/{group_id}/users", response_model=GroupResponse)
def add_member(request: Request, group_id: int, body: GroupMemberAdd) -> GroupResponse:
    return group_response(request, _service(request).add_user(group_id, body.login))


@router.delete("/groups/{group_id}/users/{login}", response_model=GroupResponse)
def remove_member(request: Request, group_id: int, login: str) -> GroupResponse:
    return group_response(request, _service(request).remove_user(group_id, login))
