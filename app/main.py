from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.firebase import init_firebase
from app.core.rate_limit_middleware import RateLimitMiddleware
from app.api.v1.router import api_router
import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def get_version() -> str:
    """Read version from VERSION file, fallback to default if not found."""
    version_file = os.path.join(os.path.dirname(os.path.dirname(__file__)), "VERSION")
    try:
        if os.path.exists(version_file):
            with open(version_file, "r") as f:
                version = f.read().strip()
                if version:
                    return version
    except OSError as e:
        logger.warning(f"Could not read VERSION file: {e}")
    return "0.1.0"


# Initialize Firebase
init_firebase()

app = FastAPI(
    title="Rocketstart API",
    version=get_version(),
    debug=settings.debug,
    redirect_slashes=False,
)

# CORS must wrap rate limiting so rejected requests still carry CORS headers
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400, with the field errors attached"""
    logger.warning(f"validation_exception_handler: {request.method} {request.url.path} - {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid data", "details": jsonable_encoder(exc.errors())},
    )


# Include routers
app.include_router(api_router, prefix=settings.api_v1_str)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
