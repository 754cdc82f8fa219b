"""
MySQL-backed persistence collaborator: users, groups, memberships and the
expense/income ledger. The settlement engine never touches this directly;
the HTTP layer fetches a snapshot here and hands it to the engine.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .db import Database, db as default_db
from .models import Period

logger = logging.getLogger(__name__)

_EXPENSE_COLUMNS = """
    e.id, e.group_id, e.added_by, e.title, e.amount, e.type, e.expense_date,
    e.month, e.year, e.created_at, e.updated_at,
    u.name AS added_by_name, u.email AS added_by_email, u.avatar AS added_by_avatar
"""

_UPDATABLE_EXPENSE_FIELDS = ("title", "amount", "type", "expense_date")


class GroupStore:
    def __init__(self, database: Optional[Database] = None) -> None:
        self.db = database or default_db

    # Users

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one(
            "SELECT id, google_id, name, email, avatar, created_at FROM users WHERE id=%s",
            (user_id,),
        )

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one(
            "SELECT id, google_id, name, email, avatar, created_at FROM users WHERE email=%s",
            (email,),
        )

    def search_users(self, email_query: str, limit: int = 20) -> List[Dict[str, Any]]:
        return list(
            self.db.fetch_all(
                """
                SELECT id, google_id, name, email, avatar, created_at
                FROM users
                WHERE email LIKE %s
                ORDER BY email
                LIMIT %s
                """,
                (f"%{email_query}%", limit),
            )
        )

    # Groups

    def list_groups_for_user(self, user_id: int) -> List[Dict[str, Any]]:
        return list(
            self.db.fetch_all(
                """
                SELECT g.id, g.group_name, g.created_by, g.created_at, g.updated_at
                FROM `groups` g
                JOIN group_members gm ON gm.group_id = g.id
                WHERE gm.user_id = %s
                ORDER BY g.group_name
                """,
                (user_id,),
            )
        )

    def get_group(self, group_id: int) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one(
            "SELECT id, group_name, created_by, created_at, updated_at FROM `groups` WHERE id=%s",
            (group_id,),
        )

    def create_group(self, name: str, created_by: int) -> int:
        group_id = self.db.execute(
            "INSERT INTO `groups` (group_name, created_by) VALUES (%s, %s)",
            (name, created_by),
        )
        self.add_member(group_id, created_by)
        logger.info("group %s created by user %s", group_id, created_by)
        return group_id

    def rename_group(self, group_id: int, name: str) -> None:
        self.db.execute("UPDATE `groups` SET group_name=%s WHERE id=%s", (name, group_id))

    def delete_group(self, group_id: int) -> None:
        self.db.execute("DELETE FROM expenses WHERE group_id=%s", (group_id,))
        self.db.execute("DELETE FROM group_members WHERE group_id=%s", (group_id,))
        self.db.execute("DELETE FROM `groups` WHERE id=%s", (group_id,))
        logger.info("group %s deleted", group_id)

    # Membership

    def list_members(self, group_id: int) -> List[Dict[str, Any]]:
        return list(
            self.db.fetch_all(
                """
                SELECT u.id, u.google_id, u.name, u.email, u.avatar, u.created_at
                FROM group_members gm
                JOIN users u ON gm.user_id = u.id
                WHERE gm.group_id=%s
                ORDER BY u.name
                """,
                (group_id,),
            )
        )

    def is_member(self, group_id: int, user_id: int) -> bool:
        record = self.db.fetch_one(
            "SELECT id FROM group_members WHERE group_id=%s AND user_id=%s",
            (group_id, user_id),
        )
        return record is not None

    def add_member(self, group_id: int, user_id: int) -> None:
        self.db.execute(
            "INSERT INTO group_members (group_id, user_id) VALUES (%s, %s)",
            (group_id, user_id),
        )

    def has_expenses(self, group_id: int, user_id: int) -> bool:
        record = self.db.fetch_one(
            "SELECT id FROM expenses WHERE group_id=%s AND added_by=%s LIMIT 1",
            (group_id, user_id),
        )
        return record is not None

    def remove_member(self, group_id: int, user_id: int) -> bool:
        removed = self.db.execute_rowcount(
            "DELETE FROM group_members WHERE group_id=%s AND user_id=%s",
            (group_id, user_id),
        )
        return removed > 0

    # Ledger

    def create_expense(
        self,
        group_id: int,
        added_by: int,
        title: str,
        amount: Decimal,
        kind: str,
        expense_date: date,
    ) -> int:
        return self.db.execute(
            """
            INSERT INTO expenses (group_id, added_by, title, amount, type, expense_date, month, year)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (group_id, added_by, title, str(amount), kind, expense_date, expense_date.month, expense_date.year),
        )

    def get_expense(self, expense_id: int) -> Optional[Dict[str, Any]]:
        return self.db.fetch_one(
            f"""
            SELECT {_EXPENSE_COLUMNS}
            FROM expenses e
            JOIN users u ON e.added_by = u.id
            WHERE e.id=%s
            """,
            (expense_id,),
        )

    def update_expense(self, expense_id: int, changes: Dict[str, Any]) -> None:
        assignments: List[str] = []
        params: List[Any] = []
        for column in _UPDATABLE_EXPENSE_FIELDS:
            if column not in changes:
                continue
            value = changes[column]
            assignments.append(f"{column}=%s")
            params.append(str(value) if isinstance(value, Decimal) else value)
            if column == "expense_date":
                assignments.extend(["month=%s", "year=%s"])
                params.extend([value.month, value.year])
        if not assignments:
            return
        params.append(expense_id)
        self.db.execute(f"UPDATE expenses SET {', '.join(assignments)} WHERE id=%s", params)

    def delete_expense(self, expense_id: int) -> None:
        self.db.execute("DELETE FROM expenses WHERE id=%s", (expense_id,))

    def list_expenses(self, group_id: int, period: Optional[Period] = None) -> List[Dict[str, Any]]:
        clauses = ["e.group_id=%s"]
        params: List[Any] = [group_id]
        if period is not None and period.month is not None:
            clauses.append("e.month=%s")
            params.append(period.month)
        if period is not None and period.year is not None:
            clauses.append("e.year=%s")
            params.append(period.year)
        return list(
            self.db.fetch_all(
                f"""
                SELECT {_EXPENSE_COLUMNS}
                FROM expenses e
                JOIN users u ON e.added_by = u.id
                WHERE {' AND '.join(clauses)}
                ORDER BY e.expense_date DESC, e.id DESC
                """,
                params,
            )
        )
