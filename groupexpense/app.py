from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from functools import wraps
from typing import Any, Dict, List, Mapping, Optional

from flask import Flask, jsonify, request, session
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .config import config
from .errors import InvariantViolationError, UnknownMemberError, ValidationError
from .ledger import entries_from_rows, summarize
from .models import EntryKind, Period, SettlementResult
from .money import to_decimal, to_wire
from .settlement import settle
from .store import GroupStore

# expenses.amount is DECIMAL(12,2)
MAX_AMOUNT = Decimal("1e10")


@dataclass(frozen=True)
class RequestContext:
    """Identity of the caller, built once per request and passed to the handler."""
    user_id: int


def create_app(store: Optional[GroupStore] = None) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.SECRET_KEY
    app.config["SESSION_COOKIE_NAME"] = config.SESSION_COOKIE_NAME
    app.config["SESSION_COOKIE_HTTPONLY"] = config.SESSION_COOKIE_HTTPONLY
    app.config["SESSION_COOKIE_SAMESITE"] = config.SESSION_COOKIE_SAMESITE

    app.logger.setLevel(config.LOG_LEVEL)
    logging.getLogger(__package__).setLevel(config.LOG_LEVEL)

    CORS(
        app,
        supports_credentials=True,
        resources={r"/*": {"origins": config.CORS_ORIGINS}},
    )

    store = store or GroupStore()

    register_error_handlers(app)
    register_routes(app, store)
    return app


def require_login(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        if "user_id" not in session:
            return _fail("authentication_required", 401)
        return func(RequestContext(user_id=session["user_id"]), *args, **kwargs)

    return wrapper


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        errors = [{"field": exc.field, "message": exc.code}] if exc.field else None
        return _fail(exc.code, 400, errors=errors)

    @app.errorhandler(UnknownMemberError)
    def handle_unknown_member(exc: UnknownMemberError):
        app.logger.warning("settlement rejected: %s", exc)
        return _fail(str(exc), 422)

    @app.errorhandler(InvariantViolationError)
    def handle_invariant_violation(exc: InvariantViolationError):
        app.logger.error("settlement invariant violated: %s", exc, exc_info=exc)
        return _fail("Failed to compute settlements", 500)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return _fail(exc.description or exc.name, exc.code or 500)


def register_routes(app: Flask, store: GroupStore) -> None:
    # Auth (token exchange happens upstream; the session only carries the user id)

    @app.get("/api/auth/me")
    @require_login
    def get_current_user(ctx: RequestContext):
        user = store.get_user(ctx.user_id)
        if not user:
            session.clear()
            return _fail("authentication_required", 401)
        return _ok({"user": _serialize_user(user)})

    @app.post("/api/auth/logout")
    @require_login
    def logout(ctx: RequestContext):
        session.clear()
        return _ok(None, message="Logout successful")

    # Users

    @app.get("/users/search")
    @require_login
    def search_users(ctx: RequestContext):
        email = (request.args.get("email") or "").strip().lower()
        if not email:
            raise ValidationError("missing_email", "email")
        users = store.search_users(email)
        return _ok({"users": [_serialize_user(user) for user in users]})

    # Groups

    @app.post("/groups")
    @require_login
    def create_group(ctx: RequestContext):
        payload = request.get_json(silent=True) or {}
        name = _require_name(payload)
        group_id = store.create_group(name, ctx.user_id)
        return _ok({"group": _load_group(store, group_id)}, message="Group created", status=201)

    @app.get("/groups")
    @require_login
    def list_groups(ctx: RequestContext):
        groups = [
            _serialize_group(group, store.list_members(group["id"]), store)
            for group in store.list_groups_for_user(ctx.user_id)
        ]
        return _ok({"groups": groups})

    @app.get("/groups/<int:group_id>")
    @require_login
    def get_group(ctx: RequestContext, group_id: int):
        group = store.get_group(group_id)
        if not group:
            return _fail("group_not_found", 404)
        members = store.list_members(group_id)
        if not _has_member(members, ctx.user_id):
            return _fail("not_authorized", 403)
        return _ok({"group": _serialize_group(group, members, store)})

    @app.put("/groups/<int:group_id>")
    @require_login
    def update_group(ctx: RequestContext, group_id: int):
        group = store.get_group(group_id)
        if not group:
            return _fail("group_not_found", 404)
        if group["created_by"] != ctx.user_id:
            return _fail("forbidden_only_creator", 403)

        payload = request.get_json(silent=True) or {}
        store.rename_group(group_id, _require_name(payload))
        return _ok({"group": _load_group(store, group_id)}, message="Group updated")

    @app.delete("/groups/<int:group_id>")
    @require_login
    def delete_group(ctx: RequestContext, group_id: int):
        group = store.get_group(group_id)
        if not group:
            return _fail("group_not_found", 404)
        if group["created_by"] != ctx.user_id:
            return _fail("forbidden_only_creator", 403)

        store.delete_group(group_id)
        return _ok(None, message="Group deleted")

    @app.post("/groups/<int:group_id>/members")
    @require_login
    def add_member(ctx: RequestContext, group_id: int):
        group = store.get_group(group_id)
        if not group:
            return _fail("group_not_found", 404)
        if not store.is_member(group_id, ctx.user_id):
            return _fail("not_authorized", 403)

        payload = request.get_json(silent=True) or {}
        email = (payload.get("email") or "").strip().lower()
        if not email:
            raise ValidationError("missing_email", "email")

        user = store.find_user_by_email(email)
        if not user:
            return _fail("user_not_found", 404)
        if store.is_member(group_id, user["id"]):
            return _fail("already_member", 409)

        store.add_member(group_id, user["id"])
        return _ok({"group": _load_group(store, group_id)}, message="Member added")

    @app.delete("/groups/<int:group_id>/members/<int:user_id>")
    @require_login
    def remove_member(ctx: RequestContext, group_id: int, user_id: int):
        group = store.get_group(group_id)
        if not group:
            return _fail("group_not_found", 404)

        # The creator may remove anyone; members may only leave.
        if ctx.user_id not in (group["created_by"], user_id):
            return _fail("forbidden_only_creator", 403)
        if user_id == group["created_by"]:
            return _fail("cannot_remove_creator", 400)
        if store.has_expenses(group_id, user_id):
            return _fail("member_has_expenses", 409)
        if not store.remove_member(group_id, user_id):
            return _fail("member_not_found", 404)

        return _ok({"group": _load_group(store, group_id)}, message="Member removed")

    # Expenses

    @app.post("/expenses")
    @require_login
    def create_expense(ctx: RequestContext):
        payload = request.get_json(silent=True) or {}
        group_id = _parse_int(payload.get("groupId"), "groupId")
        title = (payload.get("title") or "").strip()
        if not title:
            raise ValidationError("missing_title", "title")
        amount = _parse_amount(payload.get("amount"))
        kind = _parse_kind(payload.get("type", EntryKind.EXPENSE.value))
        expense_date = _parse_date(payload.get("date")) if payload.get("date") else date.today()

        if not store.get_group(group_id):
            return _fail("group_not_found", 404)
        if not store.is_member(group_id, ctx.user_id):
            return _fail("not_authorized", 403)

        expense_id = store.create_expense(group_id, ctx.user_id, title, amount, kind.value, expense_date)
        expense = store.get_expense(expense_id)
        return _ok({"expense": _serialize_expense(expense)}, message="Expense added", status=201)

    @app.get("/expenses/group/<int:group_id>")
    @require_login
    def get_group_expenses(ctx: RequestContext, group_id: int):
        if not store.get_group(group_id):
            return _fail("group_not_found", 404)
        if not store.is_member(group_id, ctx.user_id):
            return _fail("not_authorized", 403)

        expenses = store.list_expenses(group_id)
        return _ok({"expenses": [_serialize_expense(expense) for expense in expenses]})

    @app.get("/expenses/group/<int:group_id>/monthly")
    @require_login
    def get_monthly_expenses(ctx: RequestContext, group_id: int):
        period = _parse_period(request.args, default_to_current=True)
        if not store.get_group(group_id):
            return _fail("group_not_found", 404)
        if not store.is_member(group_id, ctx.user_id):
            return _fail("not_authorized", 403)

        rows = store.list_expenses(group_id, period)
        summary = summarize(entries_from_rows(rows))
        return _ok(
            {
                "expenses": [_serialize_expense(row) for row in rows],
                "summary": {
                    "totalExpense": to_wire(summary.total_expense),
                    "totalIncome": to_wire(summary.total_income),
                    "netAmount": to_wire(summary.net_amount),
                    "count": summary.count,
                },
            }
        )

    @app.put("/expenses/<int:expense_id>")
    @require_login
    def update_expense(ctx: RequestContext, expense_id: int):
        expense = store.get_expense(expense_id)
        if not expense:
            return _fail("expense_not_found", 404)
        if expense["added_by"] != ctx.user_id:
            return _fail("forbidden_only_adder", 403)

        payload = request.get_json(silent=True) or {}
        changes: Dict[str, Any] = {}
        if "title" in payload:
            title = (payload.get("title") or "").strip()
            if not title:
                raise ValidationError("missing_title", "title")
            changes["title"] = title
        if "amount" in payload:
            changes["amount"] = _parse_amount(payload.get("amount"))
        if "type" in payload:
            changes["type"] = _parse_kind(payload.get("type")).value
        if "date" in payload:
            changes["expense_date"] = _parse_date(payload.get("date"))

        store.update_expense(expense_id, changes)
        return _ok({"expense": _serialize_expense(store.get_expense(expense_id))}, message="Expense updated")

    @app.delete("/expenses/<int:expense_id>")
    @require_login
    def delete_expense(ctx: RequestContext, expense_id: int):
        expense = store.get_expense(expense_id)
        if not expense:
            return _fail("expense_not_found", 404)
        if expense["added_by"] != ctx.user_id:
            return _fail("forbidden_only_adder", 403)

        store.delete_expense(expense_id)
        return _ok(None, message="Expense deleted")

    # Settlements

    @app.get("/settlements/group/<int:group_id>")
    @require_login
    def get_settlements(ctx: RequestContext, group_id: int):
        period = _parse_period(request.args, default_to_current=False)
        if not store.get_group(group_id):
            return _fail("group_not_found", 404)
        members = store.list_members(group_id)
        if not _has_member(members, ctx.user_id):
            return _fail("not_authorized", 403)

        rows = store.list_expenses(group_id, period)
        result = settle(entries_from_rows(rows), [member["id"] for member in members])
        return _ok(_serialize_settlement(result, members))


def _ok(data: Any, message: Optional[str] = None, status: int = 200):
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def _fail(message: str, status: int, errors: Optional[List[Dict[str, Any]]] = None):
    body: Dict[str, Any] = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def _has_member(members: List[Dict[str, Any]], user_id: int) -> bool:
    return any(member["id"] == user_id for member in members)


def _load_group(store: GroupStore, group_id: int) -> Dict[str, Any]:
    return _serialize_group(store.get_group(group_id), store.list_members(group_id), store)


def _require_name(payload: Mapping[str, Any]) -> str:
    name = (payload.get("name") or "").strip()
    if not name:
        raise ValidationError("missing_group_name", "name")
    return name


def _parse_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"invalid_{field}", field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid_{field}", field) from None


def _parse_amount(value: Any):
    if value is None:
        raise ValidationError("missing_amount", "amount")
    try:
        amount = to_decimal(value)
    except ValidationError:
        raise ValidationError("invalid_amount", "amount") from None
    if amount <= 0 or amount >= MAX_AMOUNT:
        raise ValidationError("invalid_amount", "amount")
    return amount


def _parse_kind(value: Any) -> EntryKind:
    try:
        return EntryKind(str(value).upper())
    except ValueError:
        raise ValidationError("invalid_type", "type") from None


def _parse_date(value: Any) -> date:
    text = str(value).strip()
    try:
        # Accept both "2024-05-01" and full ISO timestamps such as "2024-05-01T10:00:00.000Z".
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValidationError("invalid_date", "date") from None


def _parse_period(args: Mapping[str, Any], default_to_current: bool) -> Period:
    month = args.get("month")
    year = args.get("year")
    month = _parse_int(month, "month") if month not in (None, "") else None
    year = _parse_int(year, "year") if year not in (None, "") else None

    if month is not None and not 1 <= month <= 12:
        raise ValidationError("invalid_month", "month")
    if year is not None and not 1000 <= year <= 9999:
        raise ValidationError("invalid_year", "year")

    today = date.today()
    if default_to_current:
        return Period(month=month or today.month, year=year or today.year)
    if month is not None and year is None:
        year = today.year
    return Period(month=month, year=year)


def _iso(value: Any) -> Optional[str]:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _serialize_user(user: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["id"]),
        "name": user["name"],
        "email": user["email"],
        "avatar": user.get("avatar") or "",
        "googleId": user.get("google_id") or "",
        "createdAt": _iso(user.get("created_at")),
    }


def _serialize_group(group: Mapping[str, Any], members: List[Dict[str, Any]], store: GroupStore) -> Dict[str, Any]:
    creator = next((member for member in members if member["id"] == group["created_by"]), None)
    if creator is None:
        creator = store.get_user(group["created_by"])
    return {
        "_id": str(group["id"]),
        "name": group["group_name"],
        "createdBy": _serialize_user(creator) if creator else None,
        "members": [_serialize_user(member) for member in members],
        "createdAt": _iso(group.get("created_at")),
        "updatedAt": _iso(group.get("updated_at")),
    }


def _serialize_expense(expense: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "_id": str(expense["id"]),
        "groupId": str(expense["group_id"]),
        "addedBy": {
            "id": str(expense["added_by"]),
            "name": expense["added_by_name"],
            "email": expense["added_by_email"],
            "avatar": expense.get("added_by_avatar") or "",
        },
        "title": expense["title"],
        "amount": float(to_decimal(expense["amount"])),
        "type": expense["type"],
        "splitType": "EQUAL",
        "date": _iso(expense["expense_date"]),
        "month": expense["month"],
        "year": expense["year"],
        "createdAt": _iso(expense.get("created_at")),
        "updatedAt": _iso(expense.get("updated_at")),
    }


def _serialize_settlement(result: SettlementResult, members: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_id = {member["id"]: member for member in members}

    def party(member_id) -> Dict[str, Any]:
        member = by_id[member_id]
        return {"userId": str(member_id), "name": member["name"], "avatar": member.get("avatar") or ""}

    user_balances = []
    for balance in result.balances:
        member = by_id[balance.member_id]
        aggregate = result.aggregates[balance.member_id]
        user_balances.append(
            {
                "userId": str(balance.member_id),
                "name": member["name"],
                "email": member["email"],
                "avatar": member.get("avatar") or "",
                "paid": to_wire(aggregate.paid),
                # share absorbs the rounding residual so paid - share == balance
                "share": to_wire(aggregate.paid - balance.net),
                "balance": to_wire(balance.net),
            }
        )

    settlements = [
        {"from": party(transfer.from_member), "to": party(transfer.to_member), "amount": to_wire(transfer.amount)}
        for transfer in result.transfers
    ]
    return {"userBalances": user_balances, "settlements": settlements}


app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
