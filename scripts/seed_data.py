#!/usr/bin/env python3
"""
Database Seed Script

Populates the database with sample readers, books and reading groups for
local development.

USAGE:
    # From the project root with the virtualenv activated
    python scripts/seed_data.py

This script:
1. Connects to the database using app settings
2. Clears existing data (optional)
3. Creates sample users and books
4. Creates reading groups through the membership engine, so members,
   roles and system messages look exactly like real usage
5. Prints an access token per user for trying the API and /ws
"""

import sys
from datetime import date
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import delete
from sqlalchemy.orm import Session

from readalong.database import SessionLocal, create_tables
from readalong.models import Book, GroupMember, GroupMessage, ReadingGroup, User
from readalong.services import membership
from readalong.services.security import create_access_token


def clear_data(db: Session) -> None:
    """Clear all existing data from the database."""
    print("Clearing existing data...")
    db.execute(delete(GroupMessage))
    db.execute(delete(GroupMember))
    db.execute(delete(ReadingGroup))
    db.execute(delete(Book))
    db.execute(delete(User))
    db.commit()
    print("Data cleared.")


def create_users(db: Session) -> dict[str, User]:
    """Create sample users."""
    print("Creating users...")
    users_data = [
        {"email": "ana@example.com", "first_name": "Ana", "last_name1": "García"},
        {"email": "luis@example.com", "first_name": "Luis", "last_name1": "Martín"},
        {"email": "marta@example.com", "first_name": "Marta", "last_name1": "López"},
        {"email": "omar@example.com", "first_name": "Omar", "last_name1": "Ruiz"},
    ]

    users = {}
    for data in users_data:
        user = User(**data)
        db.add(user)
        users[data["first_name"]] = user

    db.commit()
    for user in users.values():
        db.refresh(user)

    print(f"Created {len(users)} users.")
    return users


def create_books(db: Session) -> dict[str, Book]:
    """Create sample books."""
    print("Creating books...")
    books_data = [
        {
            "title": "1984",
            "authors": "George Orwell",
            "isbn": "9780451524935",
            "page_count": 328,
        },
        {
            "title": "Dune",
            "authors": "Frank Herbert",
            "isbn": "9780441172719",
            "page_count": 612,
        },
        {
            "title": "Good Omens",
            "authors": "Terry Pratchett, Neil Gaiman",
            "isbn": "9780060853983",
            "page_count": 412,
        },
    ]

    books = {}
    for data in books_data:
        book = Book(**data)
        db.add(book)
        books[data["title"]] = book

    db.commit()
    for book in books.values():
        db.refresh(book)

    print(f"Created {len(books)} books.")
    return books


def create_groups(db: Session, users: dict[str, User], books: dict[str, Book]) -> list[ReadingGroup]:
    """Create reading groups with a few members, roles and progress."""
    print("Creating reading groups...")
    ana, luis, marta, omar = (users[name].id for name in ("Ana", "Luis", "Marta", "Omar"))

    dune = membership.create_group(
        db,
        creator_id=ana,
        name="Arrakis Book Club",
        book_id=books["Dune"].id,
        description="One chapter at a time through the desert.",
        reading_goal={"pages_per_day": 25, "target_finish_date": date(2026, 12, 31)},
    )
    membership.join_group(db, dune.id, luis)
    membership.join_group(db, dune.id, marta)
    membership.set_member_role(db, dune.id, ana, luis, membership.MemberAction.PROMOTE)
    membership.update_progress(db, dune.id, luis, 48)
    membership.update_progress(db, dune.id, marta, 12)
    membership.post_message(db, dune.id, marta, "The Bene Gesserit test scene is intense!")

    omens = membership.create_group(
        db,
        creator_id=omar,
        name="Good Omens Night",
        book_id=books["Good Omens"].id,
        is_private=True,
    )
    membership.join_group(db, omens.id, ana)

    groups = [dune, omens]
    print(f"Created {len(groups)} reading groups.")
    return groups


def seed_database(clear_existing: bool = True) -> None:
    """
    Main function to seed the database.

    Args:
        clear_existing: If True, clears existing data before seeding.
    """
    print("=" * 60)
    print("Starting database seed...")
    print("=" * 60)

    create_tables()

    db = SessionLocal()

    try:
        if clear_existing:
            clear_data(db)

        users = create_users(db)
        books = create_books(db)
        groups = create_groups(db, users, books)

        print("=" * 60)
        print("Database seeding completed successfully!")
        print("=" * 60)
        print("\nSummary:")
        print(f"  - Users: {len(users)}")
        print(f"  - Books: {len(books)}")
        print(f"  - Reading groups: {len(groups)}")
        print("\nAccess tokens:")
        for name, user in users.items():
            token = create_access_token({"sub": str(user.id), "role": user.role})
            print(f"  - {name} (id={user.id}): {token}")
        print("\nYou can now access the API at http://localhost:8001")
        print("API documentation at http://localhost:8001/docs")

    except Exception as e:
        print(f"Error seeding database: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_database()
