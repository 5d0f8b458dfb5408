"""Project lookup and lifecycle operations.

Ingestion resolves projects by API key; the dashboard resolves them by id and
owner. Both lookups are exact-match and never reveal whether a project exists
for a different owner.
"""
from __future__ import annotations

import logging
import re
import secrets
import string
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .models import Project, utcnow

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "la_"
API_KEY_LENGTH = 32
_API_KEY_ALPHABET = string.ascii_letters + string.digits
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def generate_api_key() -> str:
    return API_KEY_PREFIX + "".join(
        secrets.choice(_API_KEY_ALPHABET) for _ in range(API_KEY_LENGTH)
    )


def normalize_domain(domain: str) -> str:
    domain = _SCHEME_RE.sub("", domain.strip().lower())
    return domain[:-1] if domain.endswith("/") else domain


def resolve_api_key(db: Session, api_key: str) -> Optional[Project]:
    """Return the active project owning ``api_key``, or ``None``.

    Inactive projects are treated exactly like unknown keys.
    """
    if not api_key:
        return None
    stmt = select(Project).where(Project.api_key == api_key, Project.is_active.is_(True)).limit(1)
    return db.execute(stmt).scalar_one_or_none()


def get_owned_project(db: Session, project_id: str, user_id: str) -> Project:
    stmt = select(Project).where(Project.id == project_id, Project.user_id == user_id)
    project = db.execute(stmt).scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project")
    return project


def create_project(db: Session, user_id: str, name: str, domain: str) -> Project:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name is required", field="name")
    if not domain or not domain.strip():
        raise ValidationError("Domain is required", field="domain")
    domain = normalize_domain(domain)

    duplicate = db.execute(
        select(Project.id).where(Project.user_id == user_id, Project.domain == domain)
    ).first()
    if duplicate is not None:
        raise ValidationError("A project with this domain already exists", field="domain")

    project = Project(user_id=user_id, name=name, domain=domain, api_key=generate_api_key())
    db.add(project)
    db.flush()
    logger.info("Created project %s for user %s", project.id, user_id)
    return project


def rotate_api_key(db: Session, project: Project) -> str:
    """Replace the project's key. The previous key stops resolving immediately."""
    project.api_key = generate_api_key()
    project.updated_at = utcnow()
    db.flush()
    logger.info("Rotated API key for project %s", project.id)
    return project.api_key


def set_active(db: Session, project: Project, active: bool) -> None:
    project.is_active = active
    project.updated_at = utcnow()
    db.flush()


def delete_project(db: Session, project: Project) -> None:
    # Events and daily stats go with it through ON DELETE CASCADE.
    project_id = project.id
    db.delete(project)
    db.flush()
    logger.info("Deleted project %s", project_id)
