"""create_reading_group_tables

Revision ID: 3c1f0a9d2b7e
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f0a9d2b7e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False, comment="User's email address"),
        sa.Column('role', sa.String(length=20), nullable=False, comment='System-wide role (client, admin)'),
        sa.Column('first_name', sa.String(length=100), nullable=False, comment='Given name'),
        sa.Column('last_name1', sa.String(length=100), nullable=False, comment='First surname'),
        sa.Column('last_name2', sa.String(length=100), nullable=True, comment='Second surname'),
        sa.Column('avatar', sa.Text(), nullable=True, comment="URL to user's avatar image"),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('(CURRENT_TIMESTAMP)'),
            nullable=False,
            comment='When the user registered'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'books',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False, comment='Book title'),
        sa.Column('authors', sa.String(length=500), nullable=True, comment='Comma-separated author names'),
        sa.Column('isbn', sa.String(length=20), nullable=True, comment='International Standard Book Number'),
        sa.Column('page_count', sa.Integer(), nullable=True, comment='Number of pages in the book'),
        sa.Column('cover_image', sa.Text(), nullable=True, comment='URL or path of the cover image'),
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('(CURRENT_TIMESTAMP)'),
            nullable=False
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_books_title'), 'books', ['title'], unique=False)
    op.create_index(op.f('ix_books_isbn'), 'books', ['isbn'], unique=True)

    op.create_table(
        'reading_groups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False, comment='Group name'),
        sa.Column('description', sa.Text(), nullable=True, comment='Free-text description'),
        sa.Column('book_id', sa.Integer(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False, comment='Current owner of the group'),
        sa.Column(
            'is_private',
            sa.Boolean(),
            nullable=False,
            comment='Private groups are only visible to members'
        ),
        sa.Column('pages_per_day', sa.Integer(), nullable=True),
        sa.Column('target_finish_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, comment='Optimistic concurrency counter'),
        sa.CheckConstraint(
            'pages_per_day IS NULL OR pages_per_day > 0',
            name='ck_reading_group_pages_per_day'
        ),
        sa.ForeignKeyConstraint(['book_id'], ['books.id']),
        sa.ForeignKeyConstraint(['creator_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_reading_groups_name'), 'reading_groups', ['name'], unique=False)
    op.create_index(op.f('ix_reading_groups_book_id'), 'reading_groups', ['book_id'], unique=False)

    op.create_table(
        'reading_group_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('group_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, comment='admin or member'),
        sa.Column('current_page', sa.Integer(), nullable=False, comment='Last page the member reported'),
        sa.Column('position', sa.Integer(), nullable=False, comment='Join order inside the group'),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('current_page >= 0', name='ck_group_member_current_page'),
        sa.ForeignKeyConstraint(['group_id'], ['reading_groups.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('group_id', 'user_id', name='uq_group_member_user')
    )
    op.create_index(
        op.f('ix_reading_group_members_group_id'),
        'reading_group_members',
        ['group_id'],
        unique=False
    )
    op.create_index(
        op.f('ix_reading_group_members_user_id'),
        'reading_group_members',
        ['user_id'],
        unique=False
    )

    op.create_table(
        'group_messages',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('group_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, comment='text, system or progress'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['group_id'], ['reading_groups.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_group_messages_id'), 'group_messages', ['id'], unique=False)
    op.create_index(op.f('ix_group_messages_user_id'), 'group_messages', ['user_id'], unique=False)
    op.create_index(
        'ix_group_messages_group_created',
        'group_messages',
        ['group_id', 'created_at'],
        unique=False
    )


def downgrade() -> None:
    op.drop_index('ix_group_messages_group_created', table_name='group_messages')
    op.drop_index(op.f('ix_group_messages_user_id'), table_name='group_messages')
    op.drop_index(op.f('ix_group_messages_id'), table_name='group_messages')
    op.drop_table('group_messages')
    op.drop_index(op.f('ix_reading_group_members_user_id'), table_name='reading_group_members')
    op.drop_index(op.f('ix_reading_group_members_group_id'), table_name='reading_group_members')
    op.drop_table('reading_group_members')
    op.drop_index(op.f('ix_reading_groups_book_id'), table_name='reading_groups')
    op.drop_index(op.f('ix_reading_groups_name'), table_name='reading_groups')
    op.drop_table('reading_groups')
    op.drop_index(op.f('ix_books_isbn'), table_name='books')
    op.drop_index(op.f('ix_books_title'), table_name='books')
    op.drop_table('books')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')
