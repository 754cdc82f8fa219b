from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from groupexpense.app import create_app
from groupexpense.models import Period


class InMemoryStore:
    """Dict-backed stand-in for GroupStore, same method set."""

    def __init__(self) -> None:
        self.users: Dict[int, Dict[str, Any]] = {}
        self.groups: Dict[int, Dict[str, Any]] = {}
        self.members: Dict[int, List[int]] = {}
        self.expenses: Dict[int, Dict[str, Any]] = {}
        self._next_id = 1

    def _id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def add_user(self, name: str, email: str, avatar: str = "", google_id: str = "") -> int:
        user_id = self._id()
        self.users[user_id] = {
            "id": user_id,
            "google_id": google_id,
            "name": name,
            "email": email,
            "avatar": avatar,
            "created_at": datetime(2024, 1, 1),
        }
        return user_id

    def get_user(self, user_id):
        return self.users.get(user_id)

    def find_user_by_email(self, email):
        return next((user for user in self.users.values() if user["email"] == email), None)

    def search_users(self, email_query, limit=20):
        return [user for user in self.users.values() if email_query in user["email"]][:limit]

    def list_groups_for_user(self, user_id):
        return [group for group_id, group in self.groups.items() if user_id in self.members[group_id]]

    def get_group(self, group_id):
        return self.groups.get(group_id)

    def create_group(self, name, created_by):
        group_id = self._id()
        now = datetime(2024, 1, 1)
        self.groups[group_id] = {"id": group_id, "group_name": name, "created_by": created_by, "created_at": now, "updated_at": now}
        self.members[group_id] = [created_by]
        return group_id

    def rename_group(self, group_id, name):
        self.groups[group_id]["group_name"] = name

    def delete_group(self, group_id):
        self.expenses = {k: v for k, v in self.expenses.items() if v["group_id"] != group_id}
        del self.members[group_id]
        del self.groups[group_id]

    def list_members(self, group_id):
        return sorted((self.users[user_id] for user_id in self.members.get(group_id, [])), key=lambda user: user["name"])

    def is_member(self, group_id, user_id):
        return user_id in self.members.get(group_id, [])

    def add_member(self, group_id, user_id):
        self.members[group_id].append(user_id)

    def has_expenses(self, group_id, user_id):
        return any(e["group_id"] == group_id and e["added_by"] == user_id for e in self.expenses.values())

    def remove_member(self, group_id, user_id):
        if user_id not in self.members.get(group_id, []):
            return False
        self.members[group_id].remove(user_id)
        return True

    def create_expense(self, group_id, added_by, title, amount, kind, expense_date):
        expense_id = self._id()
        self.expenses[expense_id] = {
            "id": expense_id,
            "group_id": group_id,
            "added_by": added_by,
            "title": title,
            "amount": Decimal(amount),
            "type": kind,
            "expense_date": expense_date,
            "month": expense_date.month,
            "year": expense_date.year,
            "created_at": datetime(2024, 1, 1),
            "updated_at": datetime(2024, 1, 1),
        }
        return expense_id

    def get_expense(self, expense_id):
        expense = self.expenses.get(expense_id)
        return self._with_user(expense) if expense else None

    def update_expense(self, expense_id, changes):
        expense = self.expenses[expense_id]
        expense.update(changes)
        if "expense_date" in changes:
            expense["month"] = changes["expense_date"].month
            expense["year"] = changes["expense_date"].year

    def delete_expense(self, expense_id):
        del self.expenses[expense_id]

    def list_expenses(self, group_id, period: Optional[Period] = None):
        rows = []
        for expense in self.expenses.values():
            if expense["group_id"] != group_id:
                continue
            if period is not None and period.month is not None and expense["month"] != period.month:
                continue
            if period is not None and period.year is not None and expense["year"] != period.year:
                continue
            rows.append(self._with_user(expense))
        return sorted(rows, key=lambda row: (row["expense_date"], row["id"]), reverse=True)

    def _with_user(self, expense):
        user = self.users[expense["added_by"]]
        return dict(
            expense,
            added_by_name=user["name"],
            added_by_email=user["email"],
            added_by_avatar=user["avatar"],
        )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def app(store):
    app = create_app(store=store)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    def _login(user_id: int) -> None:
        with client.session_transaction() as sess:
            sess["user_id"] = user_id

    return _login


@pytest.fixture
def trip(store):
    """Three-member group: alice created it, bob and carol joined."""
    alice = store.add_user("Alice", "alice@example.com")
    bob = store.add_user("Bob", "bob@example.com")
    carol = store.add_user("Carol", "carol@example.com")
    group_id = store.create_group("Goa trip", alice)
    store.add_member(group_id, bob)
    store.add_member(group_id, carol)
    return {"group": group_id, "alice": alice, "bob": bob, "carol": carol}


@pytest.fixture
def add_expense(store):
    def _add(group_id, user_id, amount, kind="EXPENSE", on=date(2024, 5, 10), title="Dinner"):
        return store.create_expense(group_id, user_id, title, Decimal(amount), kind, on)

    return _add
