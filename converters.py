"""
Entity <-> document converters

Documents are flat dicts of the record's public fields. The storage handle an
entity carries is not part of its document; from_document reattaches it from
the location the document was read at.
"""

from typing import Any, Dict, Generic, Optional, Tuple, Type, TypeVar

from database import DocumentRef
from schemas import Category, Product, Role, User

T = TypeVar("T")


class DocumentConverter(Generic[T]):
    def __init__(self, model: Type[T], fields: Tuple[str, ...]):
        self.model = model
        self.fields = fields

    def to_document(self, entity: T) -> Dict[str, Any]:
        return {field: getattr(entity, field) for field in self.fields}

    def from_document(self, raw: Dict[str, Any], ref: Optional[DocumentRef] = None) -> T:
        data = {field: raw[field] for field in self.fields if field in raw}
        if "id" not in data and ref is not None:
            data["id"] = ref.id
        entity = self.model(**data)
        entity._ref = ref
        return entity


role_converter = DocumentConverter(Role, ("id", "name"))

user_converter = DocumentConverter(
    User,
    ("id", "name", "lower", "email", "avatar", "role", "online", "google", "state"),
)

category_converter = DocumentConverter(Category, ("id", "name", "lower", "user", "state"))

product_converter = DocumentConverter(
    Product,
    ("id", "name", "lower", "user", "price", "img", "category", "description", "available", "state"),
)
