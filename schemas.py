from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from typing import ClassVar, Optional

from database import CollectionPath, DocumentRef

# Each class declares its primary collection in `collection`. Categories and
# products are also mirrored under their owner: users/{uid}/categories/{cid}/products


def collapse_whitespace(value: str) -> str:
    return " ".join(value.split())


def capitalize_first(value: str) -> str:
    """'  coffee BEANS ' -> 'Coffee beans'"""
    trim = collapse_whitespace(value)
    return trim[:1].upper() + trim[1:].lower()


def capitalize_words(value: str) -> str:
    """' ada  LOVELACE' -> 'Ada Lovelace'"""
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.split())


def normalized_lower(value: str) -> str:
    """The `lower` form a name will have once saved."""
    return collapse_whitespace(value).lower()


class Role(BaseModel):
    """
    Roles collection schema
    Collection name: "roles"
    """
    model_config = ConfigDict(validate_assignment=True)
    collection: ClassVar[str] = "roles"

    id: str
    name: str = Field(..., description="Role name, stored upper-cased")

    _ref: Optional[DocumentRef] = PrivateAttr(default=None)

    @property
    def ref(self) -> Optional[DocumentRef]:
        return self._ref

    def presave(self) -> None:
        self.name = collapse_whitespace(self.name).upper()

    def mirror_path(self) -> Optional[CollectionPath]:
        return None


class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    model_config = ConfigDict(validate_assignment=True)
    collection: ClassVar[str] = "users"

    id: str
    name: str = Field(..., description="Full name")
    lower: Optional[str] = Field(None, description="Lower-cased name used for lookups")
    email: str = Field(..., description="Email address")
    avatar: str = Field("", description="Avatar URL")
    role: str = Field(..., description="Role id")
    online: bool = False
    google: bool = Field(False, description="Signed up through Google")
    state: bool = Field(True, description="False once the user is deleted")

    _ref: Optional[DocumentRef] = PrivateAttr(default=None)

    @property
    def ref(self) -> Optional[DocumentRef]:
        return self._ref

    def presave(self) -> None:
        self.name = capitalize_words(self.name)
        self.lower = self.name.lower()

    def mirror_path(self) -> Optional[CollectionPath]:
        return None


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "categories", mirrored at users/{user}/categories
    """
    model_config = ConfigDict(validate_assignment=True)
    collection: ClassVar[str] = "categories"

    id: str
    name: str
    lower: Optional[str] = None
    user: str = Field(..., description="Owner user id")
    state: bool = True

    _ref: Optional[DocumentRef] = PrivateAttr(default=None)

    @property
    def ref(self) -> Optional[DocumentRef]:
        return self._ref

    def presave(self) -> None:
        self.name = capitalize_first(self.name)
        self.lower = self.name.lower()

    def mirror_path(self) -> Optional[CollectionPath]:
        return (User.collection, self.user, Category.collection)


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products", mirrored at users/{user}/categories/{category}/products
    """
    model_config = ConfigDict(validate_assignment=True)
    collection: ClassVar[str] = "products"

    id: str
    name: str
    lower: Optional[str] = None
    user: str = Field(..., description="Owner user id")
    price: float = Field(0.0, ge=0)
    img: str = Field("", description="Image URL")
    category: str = Field(..., description="Category id")
    description: str = "No description"
    available: bool = True
    state: bool = True

    _ref: Optional[DocumentRef] = PrivateAttr(default=None)

    @property
    def ref(self) -> Optional[DocumentRef]:
        return self._ref

    def presave(self) -> None:
        self.name = capitalize_first(self.name)
        self.lower = self.name.lower()

    def mirror_path(self) -> Optional[CollectionPath]:
        return (User.collection, self.user, Category.collection, self.category, Product.collection)
