"""Contributor registration, login and maintenance."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from corpus import models
from corpus.errors import AuthError, NotFoundError, ValidationError
from corpus.pipelines.normalization import normalize_email, normalize_whitespace
from corpus.security import check_admin_password, create_access_token

logger = logging.getLogger(__name__)


@dataclass
class GuestRegistration:
    """Result of a guest registration."""
    person: models.Person
    existed: bool


def parse_gender(value: str | None) -> models.Gender:
    if not value:
        raise ValidationError("Gender is required")
    for gender in models.Gender:
        if gender.value.lower() == value.strip().lower():
            return gender
    allowed = ", ".join(g.value for g in models.Gender)
    raise ValidationError(f"Invalid gender {value!r}. Allowed: {allowed}")


async def find_person_by_email(session: AsyncSession, email: str) -> models.Person | None:
    result = await session.execute(
        select(models.Person).where(models.Person.email == email.strip().lower())
    )
    return result.scalar_one_or_none()


async def get_person(session: AsyncSession, person_id: int) -> models.Person:
    person = await session.get(models.Person, person_id)
    if person is None:
        raise NotFoundError("Person", person_id)
    return person


async def register_guest(session: AsyncSession, email: str, gender: str) -> GuestRegistration:
    """Create a guest contributor, or return the existing one for this email.

    Emails are compared after trimming and lowercasing. A concurrent insert
    of the same email loses on the unique index and falls back to a lookup.
    """
    email = normalize_email(email)
    gender_value = parse_gender(gender)

    existing = await find_person_by_email(session, email)
    if existing is not None:
        logger.debug(f"Guest {email} already registered as {existing.id}")
        return GuestRegistration(person=existing, existed=True)

    person = models.Person(email=email, gender=gender_value.value, role=models.Role.USER.value)
    session.add(person)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await find_person_by_email(session, email)
        if existing is None:
            raise
        return GuestRegistration(person=existing, existed=True)

    logger.info(f"Registered guest {person.id} ({email})")
    return GuestRegistration(person=person, existed=False)


async def login_user(session: AsyncSession, email: str) -> tuple[models.Person, str]:
    """Resolve a contributor by email and issue a User token."""
    email = normalize_email(email)
    person = await find_person_by_email(session, email)
    if person is None:
        raise NotFoundError("Person", email)
    token = create_access_token(models.Role.USER.value, user_id=person.id, email=person.email)
    return person, token


def login_admin(username: str, password: str) -> str:
    if not username or not password:
        raise ValidationError("Username and password are required")
    if not check_admin_password(username, password):
        raise AuthError("Invalid credentials")
    logger.info(f"Admin {username} logged in")
    return create_access_token(models.Role.ADMIN.value)


async def update_user_name(session: AsyncSession, person_id: int, name: str | None) -> models.Person:
    """Set the display name; names are unique ignoring case."""
    if not name or not name.strip():
        raise ValidationError("Name must not be empty")
    trimmed = normalize_whitespace(name)

    taken = await session.execute(
        select(models.Person.id).where(
            models.Person.id != person_id,
            func.lower(models.Person.name) == trimmed.lower(),
        ).limit(1)
    )
    if taken.scalar_one_or_none() is not None:
        raise ValidationError(f"Name {trimmed!r} is already in use")

    person = await get_person(session, person_id)
    person.name = trimmed
    await session.commit()
    logger.info(f"Renamed person {person_id}")
    return person


async def delete_user(session: AsyncSession, person_id: int) -> models.Person:
    """Delete a person. Their recordings are left in place."""
    person = await get_person(session, person_id)
    await session.delete(person)
    await session.commit()
    logger.info(f"Deleted person {person_id} ({person.email})")
    return person
