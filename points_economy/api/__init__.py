"""
Points Economy API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import PointsError, ValidationError
from ..logging_config import get_logger, log_action
from .catalog import router as catalog_router
from .leaderboard import router as leaderboard_router
from .points import router as points_router
from .redemptions import router as redemptions_router


logger = get_logger("points_economy.api")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Points Economy API",
        description="Achievement points, reward catalog, redemptions and leaderboard",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PointsError)
    async def points_error_handler(request: Request, exc: PointsError):
        log_action(
            logger, "warning", exc.message,
            action=f"{request.method} {request.url.path}",
            error_kind=exc.kind.value, context=exc.details
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        fields = [".".join(str(part) for part in e["loc"]) for e in errors]
        message = f"{fields[0]}: {errors[0]['msg']}" if errors else "Invalid request"
        return await points_error_handler(request, ValidationError(message, details={"fields": fields}))

    # Include routers
    app.include_router(points_router, prefix="/points", tags=["Points"])
    app.include_router(catalog_router, prefix="/catalog", tags=["Catalog"])
    app.include_router(redemptions_router, prefix="/requests", tags=["Requests"])
    app.include_router(leaderboard_router, prefix="/leaderboard", tags=["Leaderboard"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "points_economy_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Points Economy API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "points": "/points",
                "catalog": "/catalog",
                "requests": "/requests",
                "leaderboard": "/leaderboard"
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "points_economy.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
