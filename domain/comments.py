from pydantic import BaseModel, Field
from typing import Any, Optional


class Comment(BaseModel):
    id: str
    postId: str
    comment: str
    author: str

    class Config:
        from_attributes = True


class CommentIn(BaseModel):
    # Both optional so a missing field gets the same 400 as an empty one
    comment: Optional[str] = None
    author: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.comment) and bool(self.author)


class StoredComment(BaseModel):
    """A comment as loaded from the store, with the reference used to delete it."""
    comment: Comment
    reference: Any = Field(default=None, exclude=True)
