from fastapi import APIRouter

from hr_console.api.v1 import import_routes, users

api_router = APIRouter()

api_router.include_router(import_routes.router, prefix="/imports", tags=["imports"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
