import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse

from config import Settings, get_request_settings
from domain.comments import Comment, CommentIn
from services.comment_store import CommentStore, CommentStoreError

logger = logging.getLogger('uvicorn.error')

router = APIRouter(
    prefix="/comments",
    tags=["comments"]
)

# Included separately so the app can attach authorization to deletes only
delete_router = APIRouter(
    prefix="/comments",
    tags=["comments"]
)

MISSING_FIELDS_MESSAGE = "Both comment and author are required"
COMMENT_ADDED_MESSAGE = "Comment added"
COMMENT_NOT_FOUND_MESSAGE = "Comment not found"
# Part of the public contract, wording included
WRONG_POST_MESSAGE = "Comment not doesn't belong to this post"


async def get_comment_store(request: Request) -> CommentStore:
    if not hasattr(request.app.state, 'store') or not request.app.state.store:
        logger.error("Comment store not initialized or unavailable.")
        raise HTTPException(status_code=503, detail="Database service unavailable")
    return request.app.state.store


@router.get("/{post_id}", response_model=List[Comment])
async def get_comments_for_post(
    post_id: str,
    store: Annotated[CommentStore, Depends(get_comment_store)],
    settings: Annotated[Settings, Depends(get_request_settings)],
):
    try:
        comments = await store.find_by_post(post_id)
    except CommentStoreError as e:
        logger.exception(f"Error retrieving comments for post {post_id}: {e}")
        if settings.legacy_list_errors:
            return PlainTextResponse("Not found")
        raise HTTPException(status_code=500, detail="Internal server error while fetching comments")
    logger.info(f"Found {len(comments)} comments for post '{post_id}'")
    return comments


@router.post("/{post_id}", status_code=status.HTTP_201_CREATED)
async def create_comment(
    post_id: str,
    store: Annotated[CommentStore, Depends(get_comment_store)],
    comment_in: Optional[CommentIn] = None,
):
    if comment_in is None or not comment_in.is_complete():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_FIELDS_MESSAGE)
    try:
        comment_id = await store.create(post_id, comment_in.comment, comment_in.author)
    except CommentStoreError as e:
        logger.exception(f"Error creating comment for post '{post_id}': {e}")
        raise HTTPException(status_code=500, detail="Internal server error while creating comment")
    logger.info(f"Created comment '{comment_id}' on post '{post_id}' by '{comment_in.author}'")
    return {"message": COMMENT_ADDED_MESSAGE}


@delete_router.delete("/{post_id}/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_comment(
    post_id: str,
    comment_id: str,
    store: Annotated[CommentStore, Depends(get_comment_store)],
):
    try:
        stored = await store.get_by_id(comment_id)
    except CommentStoreError as e:
        logger.exception(f"Error retrieving comment {comment_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error while fetching comment")
    if stored is None:
        logger.warning(f"Comment {comment_id} not found")
        raise HTTPException(status_code=404, detail=COMMENT_NOT_FOUND_MESSAGE)
    if stored.comment.postId != post_id:
        logger.warning(f"Comment {comment_id} belongs to post '{stored.comment.postId}', not '{post_id}'")
        raise HTTPException(status_code=404, detail=WRONG_POST_MESSAGE)
    try:
        await store.delete(stored)
    except CommentStoreError as e:
        logger.exception(f"Error deleting comment {comment_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error while deleting comment")
    logger.info(f"Deleted comment '{comment_id}' from post '{post_id}'")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
