"""
api/routes/v1/authorities.py -- Read-only authority listing (admin only).

Routes:
  GET /authorities          -- all authority names
  GET /authorities/{name}   -- one authority, 404 if unknown
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from auth.dependencies import require_admin

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/authorities", response_model=list[str])
def list_authorities(request: Request) -> list[str]:
    return request.app.state.user_service.get_authorities()


@router.get("/authorities/{name}", response_model=str)
def get_authority(request: Request, name: str) -> str:
    return request.app.state.user_service.get_authority(name)
