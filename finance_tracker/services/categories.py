"""Category tree maintenance.

Categories form a per-user forest of parent pointers. Every node also stores a
materialized ``path`` (ancestor names, root first) and ``level`` (depth). Any
operation that changes a node's parent or name recomputes ``path``/``level`` for
the node and its entire subtree, so descendants never go stale.
"""
import logging
import math
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, select

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..models.category import DEFAULT_COLOR, DEFAULT_ICON, Category
from ..models.transaction import Transaction


logger = logging.getLogger(__name__)


def _place_under(category: Category, parent: Optional[Category]) -> None:
    if parent is None:
        category.parent_id = None
        category.path = []
        category.level = 0
    else:
        category.parent_id = parent.id
        category.path = [*parent.path, parent.name]
        category.level = parent.level + 1


class CategoryService:
    def __init__(self, session: Session):
        self.session = session

    # ───────────── lookups ─────────────

    def _find(self, category_id: uuid.UUID) -> Optional[Category]:
        return self.session.get(Category, category_id)

    def get_category(self, user_id: uuid.UUID, category_id: uuid.UUID) -> Category:
        category = self._find(category_id)
        if category is None or category.user_id != user_id:
            raise NotFoundError("Category not found")
        return category

    def get_categories_by_ids(self, user_id: uuid.UUID, ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, Category]:
        ids = list(set(ids))
        if not ids:
            return {}
        rows = self.session.exec(
            select(Category).where(Category.user_id == user_id, Category.id.in_(ids))
        ).all()
        return {c.id: c for c in rows}

    def _children(self, category_id: uuid.UUID) -> List[Category]:
        return list(self.session.exec(select(Category).where(Category.parent_id == category_id)).all())

    def _sibling_named(
        self,
        user_id: uuid.UUID,
        parent_id: Optional[uuid.UUID],
        name: str,
        exclude: Iterable[uuid.UUID] = (),
    ) -> Optional[Category]:
        stmt = select(Category).where(Category.user_id == user_id, Category.name == name)
        if parent_id is None:
            stmt = stmt.where(Category.parent_id.is_(None))
        else:
            stmt = stmt.where(Category.parent_id == parent_id)
        exclude = list(exclude)
        if exclude:
            stmt = stmt.where(Category.id.not_in(exclude))
        return self.session.exec(stmt).first()

    def _owned_parent(self, user_id: uuid.UUID, parent_id: uuid.UUID) -> Category:
        parent = self._find(parent_id)
        if parent is None or parent.user_id != user_id:
            raise NotFoundError("Parent category not found or access denied")
        return parent

    # ───────────── hierarchy rules ─────────────

    def sync_hierarchy(self, category: Category) -> None:
        """Recompute ``path``/``level`` from the current ``parent_id``.

        A parent that does not exist (or belongs to someone else) resets the
        node to root.
        """
        parent = None
        if category.parent_id is not None:
            parent = self._find(category.parent_id)
            if parent is None or parent.user_id != category.user_id:
                logger.warning("Category %s has invalid parent %s, moving to root", category.id, category.parent_id)
                parent = None
        _place_under(category, parent)

    def rebuild_subtree(self, root: Category) -> int:
        """Recompute path/level for every descendant of ``root``. Returns the count touched."""
        touched = 0
        stack = [root]
        while stack:
            node = stack.pop()
            for child in self._children(node.id):
                _place_under(child, node)
                child.updated_at = datetime.utcnow()
                self.session.add(child)
                stack.append(child)
                touched += 1
        return touched

    def break_cycles(self, categories: List[Category]) -> List[Category]:
        """Detach one node per parent cycle and rebuild the tree under it.

        Expects parents already validated by ``sync_hierarchy``. Descendants
        hanging off a cycle keep their parent. Returns the detached nodes.
        """
        by_id = {c.id: c for c in categories}
        children = defaultdict(list)
        for c in categories:
            if c.parent_id is not None:
                children[c.parent_id].append(c.id)

        reached = set()

        def mark(start_id):
            frontier = [start_id]
            while frontier:
                node_id = frontier.pop()
                if node_id in reached:
                    continue
                reached.add(node_id)
                frontier.extend(children[node_id])

        for c in categories:
            if c.parent_id is None:
                mark(c.id)

        broken = []
        for c in categories:
            if c.id in reached:
                continue
            # climbing from an unreachable node always ends on its cycle
            seen = set()
            node = c
            while node.id not in seen:
                seen.add(node.id)
                node = by_id[node.parent_id]
            logger.warning("Category %s (%s) closes a parent cycle, moving to root", node.id, node.name)
            _place_under(node, None)
            node.updated_at = datetime.utcnow()
            self.session.add(node)
            broken.append(node)
            mark(node.id)

        if broken:
            self.session.flush()
            for node in broken:
                self.rebuild_subtree(node)
        return broken

    def _would_create_cycle(self, category_id: uuid.UUID, new_parent_id: uuid.UUID) -> bool:
        current = new_parent_id
        seen = set()
        while current is not None and current not in seen:
            if current == category_id:
                return True
            seen.add(current)
            parent = self._find(current)
            if parent is None:
                break
            current = parent.parent_id
        return False

    # ───────────── commands ─────────────

    def create_category(self, user_id: uuid.UUID, data: dict) -> Category:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        parent_id = data.get("parent_id")
        logger.info("Creating category %r for user %s (parent=%s)", name, user_id, parent_id)

        parent = self._owned_parent(user_id, parent_id) if parent_id else None

        if self._sibling_named(user_id, parent.id if parent else None, name):
            raise ConflictError("Category with this name already exists at this level")

        now = datetime.utcnow()
        category = Category(
            id=uuid.uuid4(),
            user_id=user_id,
            name=name,
            description=data.get("description"),
            color=data.get("color") or DEFAULT_COLOR,
            icon=data.get("icon") or DEFAULT_ICON,
            is_active=True,
            is_system=False,
            created_at=now,
            updated_at=now,
        )
        _place_under(category, parent)

        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info("Category %s created at level %d", category.id, category.level)
        return category

    def update_category(self, user_id: uuid.UUID, category_id: uuid.UUID, data: dict) -> Category:
        category = self.get_category(user_id, category_id)
        if category.is_system:
            raise ValidationError("System categories cannot be modified")
        logger.info("Updating category %s for user %s", category_id, user_id)

        new_name = data["name"].strip() if data.get("name") else category.name
        moves = "parent_id" in data and data["parent_id"] != category.parent_id
        new_parent = None
        if moves and data["parent_id"] is not None:
            new_parent = self._owned_parent(user_id, data["parent_id"])
            if self._would_create_cycle(category.id, new_parent.id):
                raise ValidationError("Cannot set parent: would create circular reference")
        if moves:
            target_parent_id = new_parent.id if new_parent else None
        else:
            target_parent_id = category.parent_id

        renamed = new_name != category.name
        if (moves or renamed) and self._sibling_named(user_id, target_parent_id, new_name, exclude=[category.id]):
            raise ConflictError("Category with this name already exists at this level")

        for field in ("description", "color", "icon", "is_active"):
            if field in data and data[field] is not None:
                setattr(category, field, data[field])
        category.name = new_name

        if moves:
            _place_under(category, new_parent)
        if moves or renamed:
            touched = self.rebuild_subtree(category)
            logger.info("Recomputed paths for %d descendants of %s", touched, category.id)

        category.updated_at = datetime.utcnow()
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete_category(self, user_id: uuid.UUID, category_id: uuid.UUID) -> None:
        category = self.get_category(user_id, category_id)
        if category.is_system:
            raise ValidationError("System categories cannot be deleted")

        usage = self.session.exec(
            select(func.count()).select_from(Transaction).where(
                Transaction.is_deleted == False,  # noqa: E712
                or_(Transaction.category_id == category.id, Transaction.subcategory_id == category.id),
            )
        ).one()
        if usage:
            raise ConflictError(f"Cannot delete category: used in {usage} transactions")

        logger.info("Deleting category %s for user %s", category_id, user_id)
        new_parent = self._find(category.parent_id) if category.parent_id else None
        children = self._children(category.id)
        for child in children:
            clash = self._sibling_named(
                user_id, category.parent_id, child.name, exclude=[child.id, category.id]
            )
            if clash:
                raise ConflictError(
                    f"Cannot delete category: child '{child.name}' would clash with an existing sibling"
                )

        # children leave first, then the category frees its name slot before they move up
        for child in children:
            child.parent_id = None
            self.session.add(child)
        self.session.flush()
        self.session.delete(category)
        self.session.flush()

        for child in children:
            _place_under(child, new_parent)
            child.updated_at = datetime.utcnow()
            self.session.add(child)
            self.rebuild_subtree(child)
        self.session.commit()

    def bulk_create_categories(self, user_id: uuid.UUID, items: List[dict]) -> List[Category]:
        logger.info("Bulk creating %d categories for user %s", len(items), user_id)
        created = []
        for item in items:
            try:
                created.append(self.create_category(user_id, item))
            except (ValidationError, ConflictError, NotFoundError) as e:
                self.session.rollback()
                logger.warning("Skipping category %r in bulk create: %s", item.get("name"), e.message)
        logger.info("Bulk create finished: %d of %d created", len(created), len(items))
        return created

    # ───────────── queries ─────────────

    def list_categories(
        self,
        user_id: uuid.UUID,
        parent_id: Optional[uuid.UUID] = None,
        roots_only: bool = False,
        level: Optional[int] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        stmt = select(Category).where(Category.user_id == user_id)
        if roots_only:
            stmt = stmt.where(Category.parent_id.is_(None))
        elif parent_id is not None:
            stmt = stmt.where(Category.parent_id == parent_id)
        if level is not None:
            stmt = stmt.where(Category.level == level)
        if is_active is not None:
            stmt = stmt.where(Category.is_active == is_active)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Category.name.ilike(pattern), Category.description.ilike(pattern)))

        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        page = max(1, page)
        limit = min(max(1, limit), 100)
        rows = self.session.exec(
            stmt.order_by(Category.level.asc(), Category.name.asc()).offset((page - 1) * limit).limit(limit)
        ).all()
        return {
            "categories": list(rows),
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def all_categories(self, user_id: uuid.UUID) -> List[Category]:
        return list(self.session.exec(
            select(Category).where(Category.user_id == user_id).order_by(Category.level, Category.name)
        ).all())

    def get_category_tree(self, user_id: uuid.UUID) -> List[dict]:
        rows = self.session.exec(
            select(Category)
            .where(Category.user_id == user_id, Category.is_active == True)  # noqa: E712
            .order_by(Category.level, Category.name)
        ).all()

        by_parent = defaultdict(list)
        ids = {c.id for c in rows}
        for c in rows:
            # an inactive parent hides nothing; its active children surface at root
            key = c.parent_id if c.parent_id in ids else None
            by_parent[key].append(c)

        def build(parent_key):
            return [
                {**c.model_dump(), "full_path": c.full_path, "children": build(c.id)}
                for c in by_parent.get(parent_key, [])
            ]

        tree = build(None)
        logger.info("Built category tree for user %s with %d roots", user_id, len(tree))
        return tree

    def get_category_path(self, user_id: uuid.UUID, category_id: uuid.UUID) -> dict:
        category = self.get_category(user_id, category_id)
        return {
            "id": category.id,
            "name": category.name,
            "path": category.path,
            "full_path": category.full_path,
        }

    def get_category_stats(self, user_id: uuid.UUID) -> dict:
        rows = self.all_categories(user_id)
        by_level: Dict[int, int] = defaultdict(int)
        for c in rows:
            by_level[c.level] += 1
        return {
            "total_categories": len(rows),
            "active_categories": sum(1 for c in rows if c.is_active),
            "root_categories": sum(1 for c in rows if c.parent_id is None),
            "max_depth": max((c.level for c in rows), default=0),
            "categories_by_level": dict(sorted(by_level.items())),
        }
