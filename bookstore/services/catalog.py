from sqlalchemy.orm import Session

from bookstore.errors import InsufficientStock, NotFound
from bookstore.models import Book


def list_books(db: Session) -> list[Book]:
    return db.query(Book).order_by(Book.created_at.desc(), Book.id.desc()).all()


def get_book(db: Session, book_id: int) -> Book:
    book = db.query(Book).filter(Book.id == book_id).first()
    if not book:
        raise NotFound("Book", book_id)
    return book


def get_books_by_ids(db: Session, book_ids: list[int]) -> list[Book]:
    if not book_ids:
        return []
    return db.query(Book).filter(Book.id.in_(set(book_ids))).all()


def decrement_stock(db: Session, book_id: int, quantity: int) -> None:
    """Compare-and-decrement: the row only changes if enough stock is left."""
    updated = (
        db.query(Book)
        .filter(Book.id == book_id, Book.stock >= quantity)
        .update({Book.stock: Book.stock - quantity}, synchronize_session=False)
    )
    if updated == 1:
        return

    book = db.query(Book).filter(Book.id == book_id).first()
    if not book:
        raise NotFound("Book", book_id)
    raise InsufficientStock(book_id, quantity, available=book.stock, title=book.title)


def restore_stock(db: Session, book_id: int, quantity: int) -> bool:
    updated = (
        db.query(Book)
        .filter(Book.id == book_id)
        .update({Book.stock: Book.stock + quantity}, synchronize_session=False)
    )
    return updated == 1
