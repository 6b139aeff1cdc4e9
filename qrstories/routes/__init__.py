from fastapi import APIRouter
from .stories import router as stories_router
from .images import router as images_router
from .view import router as view_router
from .uploads import router as uploads_router

# mounted under /api
api_router = APIRouter()
api_router.include_router(stories_router, prefix='/stories', tags=['stories'])
api_router.include_router(images_router, prefix='/images', tags=['images'])

# mounted at the root
router = APIRouter()
router.include_router(view_router, prefix='/view', tags=['view'])
router.include_router(uploads_router, tags=['uploads'])
