"""FastAPI server for the registry UI"""

from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from registry_ui.config import AppConfig
from registry_ui.logging_config import configure_module_logging
from registry_ui.purge import purge_old_tags
from registry_ui.registry.cache import BackgroundRefresher
from registry_ui.registry.client import Registry
from registry_ui.registry.models import ImageInfo
from registry_ui.scheduler import PurgeScheduler

logger = configure_module_logging("ui.server")

router = APIRouter()


class NamespaceListResponse(BaseModel):
    namespaces: List[str]


class RepositoryListResponse(BaseModel):
    namespace: str
    repositories: List[str]
    tag_counts: Dict[str, int]


class TagListResponse(BaseModel):
    repository: str
    tags: List[str]
    delete_allowed: bool


class DeleteResponse(BaseModel):
    repository: str
    tag: str
    deleted: bool


def _client(request: Request) -> Registry:
    client = getattr(request.app.state, "client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Registry is not available")
    return client


def _config(request: Request) -> AppConfig:
    return request.app.state.config


@router.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok"}


@router.get("/api/namespaces", response_model=NamespaceListResponse)
def list_namespaces(request: Request):
    """List namespaces of the cached catalog"""
    return NamespaceListResponse(namespaces=_client(request).namespaces())


@router.get("/api/repositories", response_model=RepositoryListResponse)
def list_repositories(request: Request, namespace: str = "library"):
    """List repositories of a namespace with their tag counts"""
    client = _client(request)
    repos = client.list_repositories(use_cache=True).get(namespace, [])
    if namespace == "library":
        # Bare catalog entries ("nginx") are counted under their own path,
        # explicit ones ("library/redis") under the prefixed path
        bare = client.cache.sub_repo_tag_counts("", repos)
        prefixed = client.cache.sub_repo_tag_counts(namespace, repos)
        counts = {name: bare[name] + prefixed[f"{namespace}/{name}"] for name in repos}
    else:
        counts = client.cache.sub_repo_tag_counts(namespace, repos)
    return RepositoryListResponse(
        namespace=namespace, repositories=repos, tag_counts=counts
    )


@router.get("/api/repositories/{repo_path:path}/tags/{tag}", response_model=ImageInfo)
def get_tag_info(request: Request, repo_path: str, tag: str):
    """Image details of a tag or digest"""
    info = _client(request).get_image_info(repo_path, tag)
    if info is None:
        raise HTTPException(status_code=404, detail=f"{repo_path}:{tag} not found")
    return info


@router.get("/api/repositories/{repo_path:path}/tags", response_model=TagListResponse)
def list_tags(
    request: Request,
    repo_path: str,
    x_webauth_user: Optional[str] = Header(None),
):
    """List tags of a repository"""
    tags = _client(request).list_tags(repo_path)
    return TagListResponse(
        repository=repo_path,
        tags=tags,
        delete_allowed=_config(request).access_control.can_delete(x_webauth_user),
    )


@router.delete(
    "/api/repositories/{repo_path:path}/tags/{tag}", response_model=DeleteResponse
)
def delete_tag(
    request: Request,
    repo_path: str,
    tag: str,
    x_webauth_user: Optional[str] = Header(None),
):
    """Delete a tag (and every tag sharing its digest)"""
    if not _config(request).access_control.can_delete(x_webauth_user):
        logger.warning(f"User {x_webauth_user!r} is not allowed to delete {repo_path}:{tag}")
        raise HTTPException(status_code=403, detail="Deletion is not allowed")

    if not _client(request).delete_tag(repo_path, tag):
        raise HTTPException(status_code=502, detail=f"Failed to delete {repo_path}:{tag}")
    return DeleteResponse(repository=repo_path, tag=tag, deleted=True)


def create_app(
    config: Optional[AppConfig] = None,
    client: Optional[Registry] = None,
    start_jobs: bool = True,
) -> FastAPI:
    """
    Build the API application.

    Args:
        config: Application config
        client: Registry client; created from config at startup when omitted
        start_jobs: Whether to run the refresh loops and the purge schedule

    Returns:
        FastAPI app
    """
    config = config or AppConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        jobs = []
        if app.state.client is None:
            app.state.client = Registry(config.registry_config())

        if start_jobs:
            refresher = BackgroundRefresher(
                app.state.client,
                catalog_interval=config.performance.catalog_refresh_interval,
                tags_count_interval=config.performance.tags_count_refresh_interval,
            )
            refresher.start()
            jobs.append(refresher)

            if config.purge_tags.schedule:
                policy = config.purge_tags.policy()
                scheduler = PurgeScheduler(
                    config.purge_tags.schedule,
                    lambda: purge_old_tags(app.state.client, policy),
                )
                scheduler.start()
                jobs.append(scheduler)

        yield

        for job in jobs:
            job.stop()
        app.state.client.close()

    app = FastAPI(title="Registry UI API", lifespan=lifespan)
    app.state.config = config
    app.state.client = client

    # Enable CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app
