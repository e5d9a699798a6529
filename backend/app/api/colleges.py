"""
College API routes.

Routes:
    GET    /api/v1/colleges                — List colleges
    POST   /api/v1/colleges                — Create college (platform admin)
    GET    /api/v1/colleges/{college_id}   — Get college
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.errors import PermissionDenied
from app.models.user import User
from app.schemas.user import CollegeCreate, CollegeResponse
from app.services.user_service import create_college, get_college, list_colleges
from app.middleware.rbac import get_current_user, require_admin

router = APIRouter(prefix="/api/v1/colleges", tags=["Colleges"])


@router.get("", response_model=List[CollegeResponse])
async def get_colleges(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    return [CollegeResponse.model_validate(c) for c in await list_colleges(db)]


@router.post("", response_model=CollegeResponse, status_code=status.HTTP_201_CREATED)
async def create_new_college(
    data: CollegeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    if current_user.college_id is not None:
        raise PermissionDenied("Only platform admins can create colleges")
    college = await create_college(db, name=data.name, code=data.code, address=data.address)
    return CollegeResponse.model_validate(college)


@router.get("/{college_id}", response_model=CollegeResponse)
async def get_single_college(
    college_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.college_id is not None and current_user.college_id != college_id:
        raise PermissionDenied()
    return CollegeResponse.model_validate(await get_college(db, college_id))
