from fastapi import APIRouter

from docvault.api.v1.endpoints import folders, documents, storage

api_router = APIRouter()

# Include routers
api_router.include_router(folders.router, prefix="/folders", tags=["folders"])
api_router.include_router(documents.router, prefix="/documents", tags=["documents"])
api_router.include_router(storage.router, prefix="/storage", tags=["storage"])
