import logging
from typing import List, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud.firestore import AsyncClient, FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath
from pydantic import ValidationError

from domain.comments import Comment, StoredComment

logger = logging.getLogger('uvicorn.error')


class CommentStoreError(Exception):
    """Raised when a call to the document store fails."""


class CommentStore:
    """
    Thin facade over a Firestore collection of comments.

    Every method is a single round trip (list is two: references, then one
    batched fetch). Nothing is cached and nothing is retried here.
    """

    def __init__(self, db: AsyncClient, collection: str = "comments", timeout: Optional[float] = None):
        self._db = db
        self._collection_name = collection
        self._timeout = timeout

    @property
    def collection(self):
        return self._db.collection(self._collection_name)

    def post_query(self, post_id: str):
        """Query for references only of the comments on `post_id`."""
        return self.collection \
            .where(filter=FieldFilter("postId", "==", post_id)) \
            .select([FieldPath.document_id()])

    async def find_by_post(self, post_id: str) -> List[Comment]:
        query = self.post_query(post_id)
        try:
            refs = [snapshot.reference async for snapshot in query.stream(retry=None, timeout=self._timeout)]
            if not refs:
                return []
            comments = []
            async for doc in self._db.get_all(refs, retry=None, timeout=self._timeout):
                if not doc.exists:
                    # Deleted between the two calls
                    continue
                comment_data = doc.to_dict()
                comment_data['id'] = doc.id
                try:
                    comments.append(Comment(**comment_data))
                except ValidationError as validation_error:
                    logger.error(f"Data validation error for comment {doc.id}: {validation_error}. Data: {comment_data}")
                    continue
            return comments
        except google_exceptions.GoogleAPIError as e:
            raise CommentStoreError(f"Failed to list comments for post '{post_id}'") from e

    async def create(self, post_id: str, comment: str, author: str) -> str:
        data = {
            "postId": post_id,
            "comment": comment,
            "author": author,
        }
        try:
            _, doc_ref = await self.collection.add(data, retry=None, timeout=self._timeout)
        except google_exceptions.GoogleAPIError as e:
            raise CommentStoreError(f"Failed to create comment for post '{post_id}'") from e
        return doc_ref.id

    async def get_by_id(self, comment_id: str) -> Optional[StoredComment]:
        try:
            doc_ref = self.collection.document(comment_id)
        except ValueError:
            logger.warning(f"Rejected malformed comment id '{comment_id}'")
            return None
        try:
            doc = await doc_ref.get(retry=None, timeout=self._timeout)
        except google_exceptions.InvalidArgument:
            logger.warning(f"Store rejected comment id '{comment_id}'")
            return None
        except google_exceptions.GoogleAPIError as e:
            raise CommentStoreError(f"Failed to fetch comment '{comment_id}'") from e
        if not doc.exists:
            return None
        comment_data = doc.to_dict()
        comment_data['id'] = doc.id
        try:
            comment = Comment(**comment_data)
        except ValidationError as e:
            raise CommentStoreError(f"Stored comment '{comment_id}' is malformed") from e
        return StoredComment(comment=comment, reference=doc.reference)

    async def delete(self, stored: StoredComment) -> None:
        try:
            await stored.reference.delete(retry=None, timeout=self._timeout)
        except google_exceptions.GoogleAPIError as e:
            raise CommentStoreError(f"Failed to delete comment '{stored.comment.id}'") from e
