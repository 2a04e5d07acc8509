import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from catalog.config import get_settings
from catalog.db import init_db
from catalog.errors import CatalogError
from catalog.observability import setup_logging
from catalog.routers import documents, search, tags, users

logger = logging.getLogger(__name__)

settings = get_settings()

# Initialize FastAPI app
app = FastAPI(
    title="Document Catalog",
    description="Markdown document catalog with tags, stars and search",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    setup_logging(settings.log_level, settings.log_format)
    init_db()
    logger.info("Database initialized")


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError):
    level = logging.ERROR if exc.http_status >= 500 else logging.INFO
    logger.log(level, exc.message, extra={"error_code": exc.code, "path": request.url.path})
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path})
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "INTERNAL_ERROR"},
    )


# Include routers
app.include_router(documents.router)
app.include_router(search.router)
app.include_router(tags.router)
app.include_router(users.router)


@app.get("/")
def root():
    """
    Root endpoint - API information.
    """
    return {
        "message": "Document Catalog API",
        "version": "1.0.0",
        "docs": "/docs",
        "endpoints": {
            "create": "POST /documents",
            "get": "GET /documents/{document_id}",
            "update": "PUT /documents/{document_id}",
            "delete": "DELETE /documents/{document_id}",
            "star": "POST /documents/{document_id}/star",
            "download": "GET /documents/{document_id}/download",
            "stats": "GET /documents/{document_id}/stats",
            "search": "GET /search",
            "tags": "GET /tags",
            "update_tag": "PATCH /tags/{tag_id}",
            "resolve_user": "POST /users/resolve",
            "update_profile": "PATCH /users/me",
            "top_contributors": "GET /users/top-contributors"
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("catalog.main:app", host="0.0.0.0", port=8000)
