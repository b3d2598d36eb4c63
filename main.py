##########
# Imports
##########
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import realtime
from config import CORS_ORIGINS, LOG_LEVEL, PORT
from database import db, init_indexes
from log import configure_logging, request_id_middleware
from routers import (
    auth,
    chats,
    comments,
    listings,
    messages,
    moderation,
    notifications,
    posts,
    reports,
    search,
    subreddits,
    users,
    votes,
)

logger = logging.getLogger("threadit")


#####################
# FastAPI App Setup
#####################
app = FastAPI(title="Threadit", description="Community discussion platform API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(request_id_middleware)

for module in (
    auth,
    users,
    subreddits,
    posts,
    comments,
    votes,
    listings,
    messages,
    chats,
    notifications,
    search,
    reports,
    moderation,
):
    app.include_router(module.router)
app.include_router(realtime.router)


##################
# Error Handlers
##################
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


##############
# Startup Hook
##############
@app.on_event("startup")
async def startup_event():
    """Configure logging and ensure DB indexes"""
    configure_logging(LOG_LEVEL)
    await init_indexes(db)


@app.get("/")
async def root():
    return {"success": True, "message": "Threadit API is running"}


###############
# Entry Point
###############
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
