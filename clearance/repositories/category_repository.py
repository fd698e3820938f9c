import re
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from clearance.models.category import Category


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")


class CategoryRepository:
    """Catégories curées. Le pipeline n'utilise que resolve()."""

    def __init__(self, session: Session):
        self.session = session

    def list(self, active_only: bool = False) -> List[Category]:
        stmt = select(Category).order_by(Category.name)
        if active_only:
            stmt = stmt.where(Category.is_active.is_(True))
        return list(self.session.scalars(stmt))

    def get(self, category_id: int) -> Optional[Category]:
        return self.session.get(Category, category_id)

    def create(self, name: str, slug: Optional[str] = None, is_active: bool = True) -> Category:
        category = Category(name=name.strip(), slug=slug or slugify(name), is_active=is_active)
        self.session.add(category)
        self.session.flush()
        return category

    def update(
        self,
        category: Category,
        name: Optional[str] = None,
        slug: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Category:
        if name is not None:
            category.name = name.strip()
        if slug is not None:
            category.slug = slug
        if is_active is not None:
            category.is_active = is_active
        self.session.flush()
        return category

    def resolve(self, category_id: Optional[int], hint: Optional[str]) -> Optional[Category]:
        """Lookup par id puis par slug / nom. Ne crée jamais de catégorie."""
        if category_id is not None:
            category = self.get(category_id)
            if category is not None:
                return category
        if not hint:
            return None
        return self.session.scalars(
            select(Category).where(or_(
                Category.slug == slugify(hint),
                func.lower(Category.name) == hint.strip().lower(),
            ))
        ).first()
