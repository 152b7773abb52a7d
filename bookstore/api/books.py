from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from bookstore.models import get_db
from bookstore.schemas.books import BookResponse
from bookstore.services import catalog

router = APIRouter()


@router.get(
    "",
    response_model=list[BookResponse],
    summary="List all books",
)
def list_books(
    db: Annotated[Session, Depends(get_db)],
):
    """Returns the catalog, newest first, with current stock."""
    return catalog.list_books(db)


@router.get(
    "/{book_id}",
    response_model=BookResponse,
    summary="Get book by ID",
)
def get_book(
    book_id: int,
    db: Annotated[Session, Depends(get_db)],
):
    return catalog.get_book(db, book_id)
