"""
Menu Domain Service - the customer-facing view of a branch menu.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from rest_api.models import Branch, MenuCategory, MenuItem
from shared.utils.exceptions import NotFoundError
from shared.utils.schemas import PublicMenu, PublicMenuCategory, PublicMenuItem


class MenuService:
    """Read-only menu queries for public channels."""

    def __init__(self, db: Session):
        self._db = db

    def get_public_menu(self, branch_id: int) -> PublicMenu:
        """
        Available categories and items of an active branch.

        Items whose category is unavailable are hidden; items without a
        category are listed separately.
        """
        branch = self._db.scalar(
            select(Branch).where(Branch.id == branch_id, Branch.is_active.is_(True))
        )
        if branch is None:
            raise NotFoundError("Branch", branch_id)

        categories = self._db.scalars(
            select(MenuCategory)
            .where(
                MenuCategory.branch_id == branch.id,
                MenuCategory.is_active.is_(True),
                MenuCategory.is_available.is_(True),
            )
            .order_by(MenuCategory.display_order, MenuCategory.id)
        ).all()
        items = self._db.scalars(
            select(MenuItem)
            .where(
                MenuItem.branch_id == branch.id,
                MenuItem.is_active.is_(True),
                MenuItem.is_available.is_(True),
            )
            .order_by(MenuItem.name, MenuItem.id)
        ).all()

        sections = {
            category.id: PublicMenuCategory(
                id=category.id,
                name=category.name,
                display_order=category.display_order,
            )
            for category in categories
        }
        menu = PublicMenu(branch_id=branch.id, branch_name=branch.name)
        for item in items:
            entry = PublicMenuItem.model_validate(item)
            if item.category_id is None:
                menu.uncategorized.append(entry)
            elif item.category_id in sections:
                sections[item.category_id].items.append(entry)
        menu.categories = list(sections.values())
        return menu
