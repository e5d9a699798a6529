"""User and college service: admin-scoped directory management."""

from datetime import datetime, timezone
from typing import Optional, List, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import CollegeNotFound, Conflict, UserNotFound, ValidationFailed
from app.models.college import College
from app.models.user import User, UserRole


async def create_college(
    db: AsyncSession,
    name: str,
    code: str,
    address: Optional[str] = None,
) -> College:
    """Create a college. Name and code are unique."""
    existing = await db.execute(
        select(College).where((College.name == name) | (College.code == code))
    )
    if existing.scalar_one_or_none():
        raise Conflict("College name or code already exists")

    college = College(name=name, code=code.upper(), address=address)
    db.add(college)
    await db.flush()
    await db.refresh(college)
    return college


async def get_college(db: AsyncSession, college_id: int) -> College:
    result = await db.execute(select(College).where(College.id == college_id))
    college = result.scalar_one_or_none()
    if not college:
        raise CollegeNotFound()
    return college


async def list_colleges(db: AsyncSession) -> List[College]:
    result = await db.execute(select(College).order_by(College.name))
    return list(result.scalars().all())


async def create_user(
    db: AsyncSession,
    username: str,
    email: str,
    first_name: str,
    last_name: str,
    role: str,
    college_id: Optional[int] = None,
    student_id: Optional[str] = None,
    department: Optional[str] = None,
) -> User:
    """Create a user record in a college."""
    existing = await db.execute(
        select(User).where((User.username == username) | (User.email == email))
    )
    if existing.scalar_one_or_none():
        raise Conflict("Username or email already exists")

    if student_id:
        existing_student = await db.execute(select(User).where(User.student_id == student_id))
        if existing_student.scalar_one_or_none():
            raise Conflict("Student ID already exists")

    try:
        user_role = UserRole(role)
    except ValueError:
        raise ValidationFailed(fields={"role": f"Unknown role '{role}'"})

    if college_id is not None:
        await get_college(db, college_id)
    elif user_role != UserRole.ADMIN:
        raise ValidationFailed(fields={"college_id": "Faculty and students must belong to a college"})

    user = User(
        username=username,
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=user_role,
        college_id=college_id,
        student_id=student_id,
        department=department,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)
    return user


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    """Get a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await get_user_by_id(db, user_id)
    if not user:
        raise UserNotFound()
    return user


async def get_users(
    db: AsyncSession,
    college_id: Optional[int] = None,
    role: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    per_page: int = 50,
) -> Tuple[List[User], int]:
    """Get paginated users with optional filters."""
    query = select(User)
    count_query = select(func.count(User.id))

    filters = []
    if college_id is not None:
        filters.append(User.college_id == college_id)
    if role:
        filters.append(User.role == UserRole(role))
    if search:
        search_pattern = f"%{search}%"
        filters.append(
            (User.username.ilike(search_pattern)) |
            (User.email.ilike(search_pattern)) |
            (User.first_name.ilike(search_pattern)) |
            (User.last_name.ilike(search_pattern))
        )

    if filters:
        query = query.where(and_(*filters))
        count_query = count_query.where(and_(*filters))

    total_result = await db.execute(count_query)
    total = total_result.scalar()

    query = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * per_page).limit(per_page)
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def get_students_in_college(
    db: AsyncSession,
    student_ids: List[int],
    college_id: Optional[int],
) -> List[User]:
    """Resolve ``student_ids`` to active students of ``college_id``; missing ids are dropped."""
    if not student_ids:
        return []
    result = await db.execute(
        select(User).where(
            and_(
                User.id.in_(student_ids),
                User.role == UserRole.STUDENT,
                User.college_id == college_id,
                User.is_active == True,  # noqa: E712
            )
        )
    )
    return list(result.scalars().all())


async def deactivate_user(db: AsyncSession, user_id: int) -> User:
    user = await get_user(db, user_id)
    user.is_active = False
    user.updated_at = datetime.now(timezone.utc)
    await db.flush()
    await db.refresh(user)
    return user
