import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from auth import AccountService
from database import DATABASE_NAME, DATABASE_URL, db, get_store
from dependencies import (
    ensure_unique_category,
    ensure_unique_email,
    ensure_unique_product,
    get_accounts,
    get_auth_user,
    get_repositories,
    own_category,
    own_product,
    own_user,
    resolve_category,
    resolve_role,
    valid_category,
    valid_product,
    valid_user,
)
from errors import InvalidQueryError, ReplicationError, StoreError
from repositories import Repositories
from schemas import Category, Product, User, normalized_lower

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        store = get_store()
    except StoreError as e:
        logger.warning("%s, data endpoints will fail", e)
    else:
        app.state.repositories = Repositories(store)
        app.state.accounts = AccountService(store)
        logger.info("Connected repositories to database %s", DATABASE_NAME)
    yield


app = FastAPI(title="Catalog API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Store errors reach the request boundary untouched by the data layer

@app.exception_handler(InvalidQueryError)
async def invalid_query_handler(_request, exc: InvalidQueryError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ReplicationError)
async def replication_error_handler(_request, exc: ReplicationError):
    return JSONResponse(
        status_code=500,
        content={"detail": "Saved but the owner copy could not be updated", "primary": exc.primary, "mirror": exc.mirror},
    )


@app.exception_handler(StoreError)
async def store_error_handler(_request, exc: StoreError):
    logger.error("Store failure: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


# Models for requests
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RoleCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)


class UserCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: str
    avatar: Optional[str] = None


class UserUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    role: Optional[str] = Field(None, min_length=1)
    avatar: Optional[str] = None
    online: Optional[bool] = None


class CategoryRequest(BaseModel):
    name: str = Field(..., min_length=1)


class ProductCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    category: str = Field(..., description="Category name")
    price: Optional[float] = Field(None, ge=0)
    img: Optional[str] = None
    description: Optional[str] = None
    available: Optional[bool] = None


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = Field(None, min_length=1, description="Category name")
    price: Optional[float] = Field(None, ge=0)
    img: Optional[str] = None
    description: Optional[str] = None
    available: Optional[bool] = None


SEARCH_FIELDS = {
    "users": ("lower", "email"),
    "categories": ("lower",),
    "products": ("lower", "description"),
}


@app.get("/")
def read_root():
    return {"message": "Catalog API ready"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ {str(e)[:80]}"
    return response


# Auth endpoints
@app.post("/api/auth/login")
def login(
    payload: LoginRequest,
    repos: Repositories = Depends(get_repositories),
    accounts: AccountService = Depends(get_accounts),
):
    uid = accounts.authenticate(payload.email, payload.password)
    user = repos.users.find_by_id(uid) if uid else None
    if not user or not user.state:
        raise HTTPException(status_code=401, detail="Email or password incorrect")
    token = accounts.create_session(user.id)
    return {"msg": "Login successful", "user": user, "token": token}


@app.get("/api/auth/renew")
def renew_token(auth_user: User = Depends(get_auth_user), accounts: AccountService = Depends(get_accounts)):
    token = accounts.create_session(auth_user.id)
    return {"msg": "Token renewed", "user": auth_user, "token": token}


# Roles endpoints
@app.get("/api/roles")
def list_roles(repos: Repositories = Depends(get_repositories)):
    return {"msg": "Get all roles successfully", "roles": repos.roles.find_all()}


@app.post("/api/roles")
def create_role(payload: RoleCreateRequest, repos: Repositories = Depends(get_repositories)):
    role = repos.roles.new(name=payload.name)
    role.presave()
    if repos.roles.where_equal_one({"name": role.name}):
        raise HTTPException(status_code=400, detail=f"The role {role.name} already exists")
    repos.roles.save(role)
    return {"msg": "Role saved successfully", "role": role}


# Users endpoints
@app.get("/api/users")
def list_users(
    limit: int = Query(5, ge=1),
    skip: int = Query(0, alias="from", ge=0),
    repos: Repositories = Depends(get_repositories),
):
    users = repos.users.where_equal({"state": True}, limit=limit, skip=skip).get_results()
    return {"msg": "Users get successfully", "users": users, "count": len(users)}


@app.get("/api/users/{id}")
def get_user(user: User = Depends(valid_user)):
    return {"msg": "User get successfully", "user": user}


@app.get("/api/users/{id}/categories")
def get_user_categories(user: User = Depends(valid_user), repos: Repositories = Depends(get_repositories)):
    categories = repos.users.categories_of(user.id).where_equal({"state": True}).get_results()
    return {"msg": "User categories get successfully", "categories": categories}


@app.post("/api/users")
def create_user(
    payload: UserCreateRequest,
    repos: Repositories = Depends(get_repositories),
    accounts: AccountService = Depends(get_accounts),
):
    ensure_unique_email(repos, payload.email)
    role_id = resolve_role(repos, payload.role)
    try:
        uid = accounts.create_account(
            payload.email, payload.password, display_name=payload.name, photo_url=payload.avatar
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    user = repos.users.new(id=uid, name=payload.name, email=payload.email, role=role_id, avatar=payload.avatar or "")
    repos.users.save(user)
    token = accounts.create_session(user.id)
    return {"msg": "User saved successfully", "user": user, "token": token}


@app.put("/api/users/{id}")
def update_user(
    payload: UserUpdateRequest,
    user: User = Depends(own_user),
    repos: Repositories = Depends(get_repositories),
    accounts: AccountService = Depends(get_accounts),
):
    ensure_unique_email(repos, payload.email, user.id)
    patch = payload.model_dump(exclude_unset=True, exclude={"password"})
    if payload.role is not None:
        patch["role"] = resolve_role(repos, payload.role)

    accounts.update_account(
        user.id,
        email=payload.email,
        password=payload.password,
        display_name=payload.name,
        photo_url=payload.avatar,
    )
    repos.users.update(user, patch)
    return {"msg": "User updated successfully", "user": user}


@app.delete("/api/users/{id}")
def delete_user(
    user: User = Depends(own_user),
    repos: Repositories = Depends(get_repositories),
    accounts: AccountService = Depends(get_accounts),
):
    accounts.disable_account(user.id)
    repos.users.update(user, {"state": False})
    return {"msg": "User deleted successfully", "user": user}


# Categories endpoints
@app.get("/api/categories")
def list_categories(repos: Repositories = Depends(get_repositories)):
    categories = repos.categories.where_equal({"state": True}).get_results()
    return {"msg": "Get all categories successfully", "categories": categories}


@app.get("/api/categories/search")
def search_categories(name: str = Query(""), repos: Repositories = Depends(get_repositories)):
    categories = (
        repos.categories.where_equal({"state": True})
        .where_starts_with({"lower": normalized_lower(name)})
        .get_results()
    )
    return {"msg": "Get categories by name successfully", "categories": categories}


@app.get("/api/categories/{id}")
def get_category(category: Category = Depends(valid_category)):
    return {"msg": "Get category by id successfully", "category": category}


@app.get("/api/categories/{id}/products")
def get_category_products(category: Category = Depends(valid_category), repos: Repositories = Depends(get_repositories)):
    products = repos.categories.products_of(category).where_equal({"state": True}).get_results()
    return {"msg": "Category products get successfully", "products": products}


@app.post("/api/categories")
def create_category(
    payload: CategoryRequest,
    auth_user: User = Depends(get_auth_user),
    repos: Repositories = Depends(get_repositories),
):
    ensure_unique_category(repos, payload.name)
    category = repos.categories.new(name=payload.name, user=auth_user.id)
    repos.categories.save(category)
    return {"msg": "Category saved successfully", "category": category}


@app.put("/api/categories/{id}")
def update_category(
    payload: CategoryRequest,
    category: Category = Depends(own_category),
    repos: Repositories = Depends(get_repositories),
):
    ensure_unique_category(repos, payload.name, category.id)
    repos.categories.update(category, payload.model_dump(exclude_unset=True))
    return {"msg": "Category updated successfully", "category": category}


@app.delete("/api/categories/{id}")
def delete_category(category: Category = Depends(own_category), repos: Repositories = Depends(get_repositories)):
    repos.categories.update(category, {"state": False})
    return {"msg": "Category deleted successfully", "category": category}


# Products endpoints
@app.get("/api/products")
def list_products(repos: Repositories = Depends(get_repositories)):
    products = repos.products.where_equal({"state": True}).get_results()
    return {"msg": "Get all products successfully", "products": products}


@app.get("/api/products/search")
def search_products(name: str = Query(""), repos: Repositories = Depends(get_repositories)):
    products = (
        repos.products.where_equal({"state": True})
        .where_starts_with({"lower": normalized_lower(name)})
        .get_results()
    )
    return {"msg": "Get products by name successfully", "products": products}


@app.get("/api/products/{id}")
def get_product(product: Product = Depends(valid_product)):
    return {"msg": "Get product by id successfully", "product": product}


@app.post("/api/products")
def create_product(
    payload: ProductCreateRequest,
    auth_user: User = Depends(get_auth_user),
    repos: Repositories = Depends(get_repositories),
):
    ensure_unique_product(repos, payload.name)
    fields = payload.model_dump(exclude_none=True)
    fields["category"] = resolve_category(repos, payload.category)
    product = repos.products.new(user=auth_user.id, **fields)
    repos.products.save(product)
    return {"msg": "Product saved successfully", "product": product}


@app.put("/api/products/{id}")
def update_product(
    payload: ProductUpdateRequest,
    product: Product = Depends(own_product),
    repos: Repositories = Depends(get_repositories),
):
    ensure_unique_product(repos, payload.name, product.id)
    patch = payload.model_dump(exclude_unset=True)
    if payload.category is not None:
        patch["category"] = resolve_category(repos, payload.category)
    repos.products.update(product, patch)
    return {"msg": "Product updated successfully", "product": product}


@app.delete("/api/products/{id}")
def delete_product(product: Product = Depends(own_product), repos: Repositories = Depends(get_repositories)):
    repos.products.update(product, {"state": False})
    return {"msg": "Product deleted successfully", "product": product}


# Search endpoint
@app.get("/api/search/{collection}/{query}")
def search(collection: str, query: str, repos: Repositories = Depends(get_repositories)):
    collection = collection.lower()
    if collection not in SEARCH_FIELDS:
        raise HTTPException(
            status_code=400, detail=f"Allowed collections are: {', '.join(SEARCH_FIELDS)}"
        )

    if ObjectId.is_valid(query):
        fields = {"id": query}
    else:
        fields = {field: query.lower() for field in SEARCH_FIELDS[collection]}

    repository = getattr(repos, collection)
    results = repository.where_equal({"state": True}).either_contains(fields)
    return {"msg": "Search successfully", "results": results}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
