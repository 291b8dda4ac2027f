"""
Repositories

One repository per record type, all built once at startup around the same
store (see Repositories) and handed to request handlers.

Writes are dual: categories and products live in their top-level collection
and again under their owner (users/{uid}/categories/{cid}/products/{pid}).
The two writes are sequential, not atomic. When the mirror write fails after
the primary went through, ReplicationError is raised with the primary already
changed; repair_mirror() copies the primary back over the mirror.
"""

import logging
from typing import Any, Callable, Generic, List, Mapping, Optional, Type, TypeVar

from converters import (
    DocumentConverter,
    category_converter,
    product_converter,
    role_converter,
    user_converter,
)
from database import DocumentRef, DocumentStore
from errors import ReplicationError, StoreError
from query import QueryBuilder
from schemas import Category, Product, Role, User

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Repository(Generic[T]):
    def __init__(self, store: DocumentStore, model: Type[T], converter: DocumentConverter[T]):
        self.store = store
        self.model = model
        self.converter = converter
        self.path = (model.collection,)

    # Construction

    def new(self, **fields: Any) -> T:
        """Build an unsaved entity whose id is reserved up front unless given."""
        if not fields.get("id"):
            fields["id"] = self.store.allocate_id(self.path)
        return self.model(**fields)

    # Lookups

    def query(self) -> QueryBuilder[T]:
        return QueryBuilder(self.store, self.path, self.converter)

    def find_by_id(self, id: str) -> Optional[T]:
        ref = DocumentRef(self.path, id)
        raw = self.store.get(ref)
        if raw is None:
            return None
        return self.converter.from_document(raw, ref)

    def find_all(self, limit: Optional[int] = None, skip: Optional[int] = None) -> List[T]:
        return self.query().where_equal({}, limit=limit, skip=skip).get_results()

    def where_equal(self, fields: Mapping[str, Any], limit: Optional[int] = None, skip: Optional[int] = None) -> QueryBuilder[T]:
        return self.query().where_equal(fields, limit=limit, skip=skip)

    def where_equal_one(self, fields: Mapping[str, Any]) -> Optional[T]:
        return self.where_equal(fields, limit=1).first()

    def where_starts_with(self, fields: Mapping[str, Any], limit: Optional[int] = None, skip: Optional[int] = None) -> QueryBuilder[T]:
        return self.query().where_starts_with(fields, limit=limit, skip=skip)

    def where_either_contains(self, fields: Mapping[str, Any], limit: Optional[int] = None, skip: Optional[int] = None) -> List[T]:
        return self.query().either_contains(fields, limit=limit, skip=skip)

    # Writes

    def _primary_ref(self, entity: T) -> DocumentRef:
        return DocumentRef(self.path, entity.id)

    def _mirror_ref(self, entity: T) -> Optional[DocumentRef]:
        path = entity.mirror_path()
        return DocumentRef(path, entity.id) if path else None

    def _mirror(self, primary: DocumentRef, mirror: DocumentRef, write: Callable[[DocumentRef], None]) -> None:
        try:
            write(mirror)
        except StoreError as e:
            logger.error(
                "Wrote %s but mirroring to %s failed, copies differ until repaired: %s",
                primary.key, mirror.key, e,
            )
            raise ReplicationError(primary.key, mirror.key, e) from e

    def _apply(self, entity: T, patch: Mapping[str, Any]) -> None:
        changes = {}
        for key, value in patch.items():
            if value is None:
                continue
            if key == "id":
                if value != entity.id:
                    raise ValueError(f"Cannot change the id of {entity.id}")
                continue
            if key not in self.converter.fields:
                raise ValueError(f"{self.model.__name__} has no field {key!r}")
            changes[key] = value
        # Validate the patched record as a whole so a bad value leaves the entity untouched
        self.model.model_validate({**entity.model_dump(), **changes})
        for key, value in changes.items():
            setattr(entity, key, value)

    def save(self, entity: T) -> T:
        entity.presave()
        data = self.converter.to_document(entity)
        primary = self._primary_ref(entity)

        self.store.set(primary, data)
        entity._ref = primary
        logger.info("Saved %s", primary.key)

        mirror = self._mirror_ref(entity)
        if mirror is not None:
            self._mirror(primary, mirror, lambda ref: self.store.set(ref, data))
        return entity

    def update(self, entity: T, patch: Mapping[str, Any]) -> T:
        """Overwrite the patched fields, renormalize and write both copies."""
        old_mirror = self._mirror_ref(entity)
        self._apply(entity, patch)
        entity.presave()
        data = self.converter.to_document(entity)
        primary = self._primary_ref(entity)

        self.store.update(primary, data)
        entity._ref = primary
        logger.info("Updated %s", primary.key)

        mirror = self._mirror_ref(entity)
        if mirror is None:
            return entity
        if mirror == old_mirror:
            self._mirror(primary, mirror, lambda ref: self.store.update(ref, data))
        else:
            # Owner changed: the nested copy moves with it
            self._mirror(primary, mirror, lambda ref: self.store.set(ref, data))
            if old_mirror is not None:
                self._mirror(primary, old_mirror, self.store.delete)
        return entity

    def repair_mirror(self, id: str) -> Optional[T]:
        """Overwrite the nested copy with the primary one."""
        entity = self.find_by_id(id)
        if entity is None:
            return None
        mirror = self._mirror_ref(entity)
        if mirror is not None:
            self.store.set(mirror, self.converter.to_document(entity))
            logger.warning("Repaired mirror %s from %s", mirror.key, entity.ref.key)
        return entity


class RoleRepository(Repository[Role]):
    def __init__(self, store: DocumentStore):
        super().__init__(store, Role, role_converter)


class UserRepository(Repository[User]):
    def __init__(self, store: DocumentStore):
        super().__init__(store, User, user_converter)

    def categories_of(self, user_id: str) -> QueryBuilder[Category]:
        """Categories from the user's nested copy."""
        return QueryBuilder(self.store, (User.collection, user_id, Category.collection), category_converter)


class CategoryRepository(Repository[Category]):
    def __init__(self, store: DocumentStore):
        super().__init__(store, Category, category_converter)

    def products_of(self, category: Category) -> QueryBuilder[Product]:
        """Products from the category's nested copy under its owner."""
        path = category.mirror_path() + (category.id, Product.collection)
        return QueryBuilder(self.store, path, product_converter)


class ProductRepository(Repository[Product]):
    def __init__(self, store: DocumentStore):
        super().__init__(store, Product, product_converter)


class Repositories:
    """Everything request handlers need from the data layer, built once per store."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.roles = RoleRepository(store)
        self.users = UserRepository(store)
        self.categories = CategoryRepository(store)
        self.products = ProductRepository(store)
