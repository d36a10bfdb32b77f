"""
Search Admin Routes

JSON endpoints behind the forum's admin page:
- Progress polling
- Starting a reindex or a clear (runs in the background)
- Saving settings and changing the index language
- Running a search query
- Clearing a stuck working flag

Every endpoint requires the admin API key.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from .dependencies import get_plugin, verify_admin
from ..core.errors import ConfigurationError
from ..models import MatchWords, ProgressData, SearchQuery
from ..plugin import DbSearchPlugin

router = APIRouter(
    prefix="/admin/plugins/dbsearch",
    tags=["dbsearch"],
    dependencies=[Depends(verify_admin)],
)


# ---------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------

class SettingsRequest(BaseModel):
    post_limit: Optional[int] = Field(default=None, alias="postLimit", ge=1)
    topic_limit: Optional[int] = Field(default=None, alias="topicLimit", ge=1)
    exclude_container_ids: Optional[List[Any]] = Field(default=None, alias="excludeContainerIds")

    model_config = ConfigDict(populate_by_name=True)


class LanguageRequest(BaseModel):
    language: str


class SearchRequest(BaseModel):
    index: str
    content: Optional[str] = None
    uid: Optional[List[Any]] = None
    cid: Optional[List[Any]] = None
    match_words: MatchWords = Field(default="all", alias="matchWords")
    timestamp_from: Optional[int] = Field(default=None, alias="timestampFrom")
    timestamp_to: Optional[int] = Field(default=None, alias="timestampTo")

    model_config = ConfigDict(populate_by_name=True)


class OperationResult(BaseModel):
    status: str
    message: Optional[str] = None


# ---------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------

@router.get("/progress", response_model=ProgressData, response_model_by_alias=True)
async def check_progress(plugin: DbSearchPlugin = Depends(get_plugin)) -> ProgressData:
    return await plugin.check_progress()


@router.post("/reindex", response_model=OperationResult, status_code=status.HTTP_202_ACCEPTED)
async def reindex(plugin: DbSearchPlugin = Depends(get_plugin)) -> OperationResult:
    plugin.reindex()
    return OperationResult(status="started", message="Reindex started")


@router.post("/clear", response_model=OperationResult, status_code=status.HTTP_202_ACCEPTED)
async def clear_index(plugin: DbSearchPlugin = Depends(get_plugin)) -> OperationResult:
    plugin.clear_index()
    return OperationResult(status="started", message="Clearing search index")


@router.post("/reset", response_model=OperationResult)
async def reset_working(plugin: DbSearchPlugin = Depends(get_plugin)) -> OperationResult:
    await plugin.reset_working()
    return OperationResult(status="ok")


@router.post("/settings")
async def save_settings(
    request: SettingsRequest,
    plugin: DbSearchPlugin = Depends(get_plugin),
) -> Dict[str, Any]:
    config = await plugin.save_settings(request.model_dump(by_alias=True, exclude_none=True))
    return config.model_dump(by_alias=True)


@router.post("/language", response_model=OperationResult)
async def change_language(
    request: LanguageRequest,
    plugin: DbSearchPlugin = Depends(get_plugin),
) -> OperationResult:
    try:
        await plugin.change_language(request.language)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return OperationResult(status="ok", message=f"Index language set to {request.language}")


@router.post("/search")
async def search(
    request: SearchRequest,
    plugin: DbSearchPlugin = Depends(get_plugin),
) -> Dict[str, List[str]]:
    if request.index not in ("topic", "post", "chat"):
        return {"ids": []}

    query = SearchQuery(
        kind=request.index,
        content=request.content,
        owner_ids=request.uid,
        container_ids=request.cid,
        match_words=request.match_words,
        timestamp_from=request.timestamp_from,
        timestamp_to=request.timestamp_to,
    )
    return {"ids": await plugin.search(query)}
