# Overview: Department-scoped ingredient lookup by stable id, falling back to case-insensitive name.

from __future__ import annotations

import logging

from sqlalchemy import func

from ..extensions import db
from ..models import Department, Ingredient


logger = logging.getLogger(__name__)


def _valid_department_id(department_id) -> int | None:
    if isinstance(department_id, bool):
        return None
    if isinstance(department_id, str):
        department_id = department_id.strip()
        if not department_id.isdigit():
            return None
    try:
        value = int(department_id)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def resolve(department_id, name: str | None, ingredient_id: int | None = None) -> Ingredient | None:
    """
    Resolve exactly one ingredient inside a department.

    1. ingredient_id given: fetch it. A missing row, or a row belonging to
       another department, is logged as an error and we fall through.
    2. Case-insensitive exact name match, filtered by department_id.

    Fails closed: with a missing/invalid/unknown department we return None
    rather than search every department. A global search would deduct stock
    from another department's ingredient of the same name.
    """
    dept_id = _valid_department_id(department_id)
    if dept_id is None:
        logger.error(
            "Cannot resolve ingredient %r (id=%s): invalid department_id %r",
            name, ingredient_id, department_id,
        )
        return None

    if ingredient_id is not None:
        ingredient = db.session.get(Ingredient, ingredient_id)
        if ingredient is None:
            logger.error("Ingredient id=%s not found; falling back to name %r", ingredient_id, name)
        elif ingredient.department_id != dept_id:
            logger.error(
                "Ingredient id=%s belongs to department %s, not %s; falling back to name %r",
                ingredient_id, ingredient.department_id, dept_id, name,
            )
        else:
            return ingredient

    if db.session.get(Department, dept_id) is None:
        logger.error("Cannot resolve ingredient %r: department %s does not exist", name, dept_id)
        return None

    needle = (name or "").strip().lower()
    if not needle:
        return None

    matches = (
        db.session.query(Ingredient)
        .filter(
            Ingredient.department_id == dept_id,
            func.lower(Ingredient.name) == needle,
        )
        .order_by(Ingredient.id.asc())
        .limit(2)
        .all()
    )
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(
            "Ambiguous ingredient name %r in department %s; using id=%s",
            name, dept_id, matches[0].id,
        )
    return matches[0]
