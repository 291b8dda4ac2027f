"""
Request dependencies: wiring, authentication and the lookup/duplicate checks
that run before a handler mutates anything.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from auth import AccountService
from repositories import Repositories
from schemas import Category, Product, User, collapse_whitespace, normalized_lower


def get_repositories(request: Request) -> Repositories:
    repositories = getattr(request.app.state, "repositories", None)
    if repositories is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return repositories


def get_accounts(request: Request) -> AccountService:
    accounts = getattr(request.app.state, "accounts", None)
    if accounts is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return accounts


# Authentication

def get_auth_user(
    x_token: Optional[str] = Header(None),
    repos: Repositories = Depends(get_repositories),
    accounts: AccountService = Depends(get_accounts),
) -> User:
    if not x_token:
        raise HTTPException(status_code=401, detail="No token in the request")
    uid = accounts.resolve_session(x_token)
    if not uid:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = repos.users.find_by_id(uid)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not user.state:
        raise HTTPException(status_code=403, detail="User is blocked")
    return user


# Path lookups: missing and soft-deleted records are both "not found"

def valid_user(id: str, repos: Repositories = Depends(get_repositories)) -> User:
    user = repos.users.find_by_id(id)
    if not user or not user.state:
        raise HTTPException(status_code=404, detail=f"User {id} not found")
    return user


def valid_category(id: str, repos: Repositories = Depends(get_repositories)) -> Category:
    category = repos.categories.find_by_id(id)
    if not category or not category.state:
        raise HTTPException(status_code=404, detail=f"Category {id} not found")
    return category


def valid_product(id: str, repos: Repositories = Depends(get_repositories)) -> Product:
    product = repos.products.find_by_id(id)
    if not product or not product.state:
        raise HTTPException(status_code=404, detail=f"Product {id} not found")
    return product


def own_user(user: User = Depends(valid_user), auth_user: User = Depends(get_auth_user)) -> User:
    if user.id != auth_user.id:
        raise HTTPException(status_code=403, detail="Only the user can change their own account")
    return user


def own_category(category: Category = Depends(valid_category), auth_user: User = Depends(get_auth_user)) -> Category:
    if category.user != auth_user.id:
        raise HTTPException(status_code=403, detail="Only the author can change this category")
    return category


def own_product(product: Product = Depends(valid_product), auth_user: User = Depends(get_auth_user)) -> Product:
    if product.user != auth_user.id:
        raise HTTPException(status_code=403, detail="Only the author can change this product")
    return product


# Duplicate and reference checks. These are reads followed by a separate
# write, so two concurrent requests can still both pass.

def ensure_unique_email(repos: Repositories, email: Optional[str], id: Optional[str] = None) -> None:
    if not email:
        return
    existing = repos.users.where_equal_one({"email": email})
    if existing and existing.id != id:
        raise HTTPException(status_code=400, detail=f"The email {email} is already in use")


def ensure_unique_category(repos: Repositories, name: Optional[str], id: Optional[str] = None) -> None:
    if name is None:
        return
    existing = repos.categories.where_equal_one({"lower": normalized_lower(name), "state": True})
    if existing and existing.id != id:
        raise HTTPException(status_code=400, detail=f"The category with the name '{existing.name}' already exists")


def ensure_unique_product(repos: Repositories, name: Optional[str], id: Optional[str] = None) -> None:
    if name is None:
        return
    existing = repos.products.where_equal_one({"lower": normalized_lower(name), "state": True})
    if existing and existing.id != id:
        raise HTTPException(status_code=400, detail=f"The product with the name '{existing.name}' already exists")


def resolve_role(repos: Repositories, name: str) -> str:
    role = repos.roles.where_equal_one({"name": collapse_whitespace(name).upper()})
    if not role:
        raise HTTPException(status_code=400, detail=f"The role with the name '{name}' does not exist")
    return role.id


def resolve_category(repos: Repositories, name: str) -> str:
    category = repos.categories.where_equal_one({"lower": normalized_lower(name), "state": True})
    if not category:
        raise HTTPException(status_code=400, detail=f"The category with the name '{name}' does not exist")
    return category.id
