import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import database
from errors import CommunityError, NotAuthenticatedError
from repositories import CommunityRepository, MemoryCommunityRepository, MongoCommunityRepository
from schemas import COMMUNITY_COLLECTION, Community, CommunityCreate, CommunityUpdate, ErrorResponse
from services import CommunityService

logger = logging.getLogger(__name__)

# "mongo" (default) or "memory" for running without a database
COMMUNITY_STORE = os.getenv("COMMUNITY_STORE", "mongo")


def setup_logging() -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    logging.getLogger("uvicorn").setLevel(logging.INFO)


setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.log_configuration()
    yield


app = FastAPI(title="Task Mania Communities API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


@app.exception_handler(CommunityError)
async def community_error_handler(request: Request, exc: CommunityError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error_type": type(exc).__name__},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.kind, detail=exc.detail).model_dump(),
    )


# ----------------- Dependencies -----------------

_memory_repository: Optional[MemoryCommunityRepository] = None


def get_community_repository() -> CommunityRepository:
    global _memory_repository
    if COMMUNITY_STORE == "memory":
        if _memory_repository is None:
            _memory_repository = MemoryCommunityRepository()
        return _memory_repository
    return MongoCommunityRepository(database.get_collection(COMMUNITY_COLLECTION))


def get_community_service(
    repository: CommunityRepository = Depends(get_community_repository),
) -> CommunityService:
    return CommunityService(repository)


# --------- Caller identity (set by the auth gateway in front of this API) ---------

def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    return x_user_id or None


def require_current_user_id(user_id: Optional[str] = Depends(get_current_user_id)) -> str:
    if user_id is None:
        raise NotAuthenticatedError("Missing X-User-Id header")
    return user_id


# ----------------- Health -----------------

@app.get("/")
def read_root():
    return {"message": "Task Mania Communities API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "store": COMMUNITY_STORE,
        "database": "❌ Not Available",
        "database_url": "✅ Set" if database.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if database.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is None:
        return response
    if not database.ping():
        response["database"] = "⚠️  Configured but not reachable"
        return response

    response["connection_status"] = "Connected"
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️  Connected but Error: {type(e).__name__}"
    return response


# ----------------- Communities -----------------

@app.get("/api/communities", response_model=List[Community])
def list_communities(
    limit: int = Query(50, ge=0, description="Maximum number of communities, 0 for all"),
    service: CommunityService = Depends(get_community_service),
):
    return service.get_all(limit=limit)


@app.get("/api/communities/public", response_model=List[Community])
def list_public_communities(service: CommunityService = Depends(get_community_service)):
    return service.get_public()


@app.get("/api/communities/creator/{creator_id}", response_model=List[Community])
def list_communities_by_creator(
    creator_id: str, service: CommunityService = Depends(get_community_service)
):
    return service.get_by_creator(creator_id)


@app.get("/api/communities/member/{member_id}", response_model=List[Community])
def list_communities_by_member(
    member_id: str, service: CommunityService = Depends(get_community_service)
):
    return service.get_by_member(member_id)


@app.get("/api/communities/admin/{admin_id}", response_model=List[Community])
def list_communities_by_admin(
    admin_id: str, service: CommunityService = Depends(get_community_service)
):
    return service.get_by_admin(admin_id)


@app.get("/api/communities/category/{category}", response_model=List[Community])
def list_communities_by_category(
    category: str, service: CommunityService = Depends(get_community_service)
):
    return service.get_by_category(category)


@app.get("/api/communities/{community_id}", response_model=Community, responses=ERROR_RESPONSES)
def get_community(community_id: str, service: CommunityService = Depends(get_community_service)):
    return service.get_by_id(community_id)


@app.post("/api/communities", response_model=Community, responses=ERROR_RESPONSES)
def create_community(
    payload: CommunityCreate,
    user_id: str = Depends(require_current_user_id),
    service: CommunityService = Depends(get_community_service),
):
    return service.create(payload.to_community(), user_id)


@app.put("/api/communities/{community_id}", response_model=Community, responses=ERROR_RESPONSES)
def update_community(
    community_id: str,
    patch: CommunityUpdate,
    user_id: str = Depends(require_current_user_id),
    service: CommunityService = Depends(get_community_service),
):
    return service.update(community_id, patch, user_id)


@app.delete("/api/communities/{community_id}", responses=ERROR_RESPONSES)
def delete_community(
    community_id: str,
    user_id: str = Depends(require_current_user_id),
    service: CommunityService = Depends(get_community_service),
):
    service.delete(community_id, user_id)
    return {"deleted": True, "id": community_id}


# ----------------- Membership -----------------

@app.post(
    "/api/communities/{community_id}/join/{user_id}",
    response_model=Community,
    responses=ERROR_RESPONSES,
)
def join_community(
    community_id: str, user_id: str, service: CommunityService = Depends(get_community_service)
):
    return service.join(community_id, user_id)


@app.post(
    "/api/communities/{community_id}/leave/{user_id}",
    response_model=Community,
    responses=ERROR_RESPONSES,
)
def leave_community(
    community_id: str, user_id: str, service: CommunityService = Depends(get_community_service)
):
    return service.leave(community_id, user_id)


@app.post(
    "/api/communities/{community_id}/admin/{user_id}",
    response_model=Community,
    responses=ERROR_RESPONSES,
)
def add_admin(
    community_id: str,
    user_id: str,
    requester_id: str = Depends(require_current_user_id),
    service: CommunityService = Depends(get_community_service),
):
    return service.add_admin(community_id, user_id, requester_id)


@app.delete(
    "/api/communities/{community_id}/admin/{user_id}",
    response_model=Community,
    responses=ERROR_RESPONSES,
)
def remove_admin(
    community_id: str,
    user_id: str,
    requester_id: str = Depends(require_current_user_id),
    service: CommunityService = Depends(get_community_service),
):
    return service.remove_admin(community_id, user_id, requester_id)


@app.get("/api/communities/{community_id}/member/{user_id}", response_model=bool)
def is_member(community_id: str, user_id: str, service: CommunityService = Depends(get_community_service)):
    return service.is_member(community_id, user_id)


@app.get("/api/communities/{community_id}/admin/{user_id}", response_model=bool)
def is_admin(community_id: str, user_id: str, service: CommunityService = Depends(get_community_service)):
    return service.is_admin(community_id, user_id)


@app.get("/api/communities/{community_id}/creator/{user_id}", response_model=bool)
def is_creator(community_id: str, user_id: str, service: CommunityService = Depends(get_community_service)):
    return service.is_creator(community_id, user_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
