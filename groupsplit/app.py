from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS

from .config import config
from .drafts import (
    ExpenseDraft,
    SetAmount,
    SetParticipants,
    SetPayers,
    SetStrategy,
    SetStrategyValue,
    SetTitle,
    ToggleExcluded,
    apply_edits,
    preview,
)
from .errors import ValidationIssue
from .ledger import aggregate, net_positions
from .models import (
    STRATEGY_KINDS,
    Expense,
    Member,
    PairwiseBalance,
    Payer,
    RecordedSettlement,
    SplitResult,
    build_strategy,
)
from .precision import externalize, quantize_money, to_decimal
from .settlement import optimize, summarize
from .splits import REMAINDER_RULES, compute, suggest_strategies
from .validation import validate_expense


def create_app(overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.SECRET_KEY
    app.config["LOG_LEVEL"] = config.LOG_LEVEL
    app.config["REMAINDER_RULE"] = config.REMAINDER_RULE
    app.config["MAX_EXPENSE_AMOUNT"] = config.MAX_EXPENSE_AMOUNT
    app.config["SETTLEMENT_TOLERANCE"] = config.SETTLEMENT_TOLERANCE
    app.config["CORS_ORIGINS"] = config.CORS_ORIGINS
    if overrides:
        app.config.update(overrides)

    if app.config["REMAINDER_RULE"] not in REMAINDER_RULES:
        raise ValueError(f"REMAINDER_RULE must be one of {', '.join(REMAINDER_RULES)}")
    app.config["MAX_EXPENSE_AMOUNT"] = to_decimal(app.config["MAX_EXPENSE_AMOUNT"])
    app.config["SETTLEMENT_TOLERANCE"] = to_decimal(app.config["SETTLEMENT_TOLERANCE"])
    if app.config["SETTLEMENT_TOLERANCE"] < 0:
        raise ValueError("SETTLEMENT_TOLERANCE cannot be negative")

    app.logger.setLevel(app.config["LOG_LEVEL"])
    logging.getLogger("groupsplit").setLevel(app.config["LOG_LEVEL"])

    CORS(app, resources={r"/api/*": {"origins": app.config["CORS_ORIGINS"]}})

    register_routes(app)
    return app


def register_routes(app: Flask) -> None:
    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok"})

    @app.get("/api/strategies")
    def list_strategies():
        return jsonify(list(STRATEGY_KINDS))

    @app.post("/api/splits/preview")
    def preview_split():
        payload = _json_payload()
        if payload is None:
            return jsonify({"error": "invalid_json"}), 400

        try:
            members = _normalize_members(payload.get("members") or [])
            expense = _normalize_expense(payload.get("expense"))
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        issues = validate_expense(expense, members or None, current_app.config["MAX_EXPENSE_AMOUNT"])
        if issues:
            return _validation_failure(issues)

        result = compute(
            expense, members, current_app.config["REMAINDER_RULE"], current_app.config["MAX_EXPENSE_AMOUNT"]
        )
        if not result.ok:
            return _validation_failure(result.errors)

        return jsonify(_serialize_split_result(result, members))

    @app.post("/api/splits/suggest")
    def suggest_split():
        payload = _json_payload()
        if payload is None:
            return jsonify({"error": "invalid_json"}), 400

        try:
            members = _normalize_members(payload.get("members") or [])
            amount = _to_money(payload.get("amount"))
            participants = _normalize_ids(payload.get("participants") or [])
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        return jsonify({"strategies": suggest_strategies(amount, participants, members)})

    @app.post("/api/balances")
    def compute_balances():
        payload = _json_payload()
        if payload is None:
            return jsonify({"error": "invalid_json"}), 400

        try:
            members = _normalize_members(payload.get("members") or [])
            expenses = [_normalize_expense(item) for item in payload.get("expenses") or []]
            settlements = _normalize_settlements(payload.get("settlements") or [])
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        result = aggregate(
            expenses,
            members,
            settlements,
            current_app.config["REMAINDER_RULE"],
            current_app.config["MAX_EXPENSE_AMOUNT"],
        )
        if not result.ok:
            return _validation_failure(result.errors)

        names = _member_names(members)
        return jsonify(
            {
                "balances": [_serialize_balance(balance, names) for balance in result.balances],
                "net_positions": [
                    {
                        "member_id": summary.member_id,
                        "name": names.get(summary.member_id),
                        "total_paid": externalize(summary.total_paid),
                        "total_share": externalize(summary.total_share),
                        "net_balance": externalize(quantize_money(summary.net)),
                    }
                    for summary in result.summaries
                ],
                "warnings": [warning.to_dict() for warning in result.warnings],
            }
        )

    @app.post("/api/settlements/suggestions")
    def settlement_suggestions():
        payload = _json_payload()
        if payload is None:
            return jsonify({"error": "invalid_json"}), 400

        warnings: List[Dict[str, Any]] = []
        try:
            members = _normalize_members(payload.get("members") or [])
            if "balances" in payload:
                balances = _normalize_balances(payload.get("balances") or [])
            else:
                expenses = [_normalize_expense(item) for item in payload.get("expenses") or []]
                settlements = _normalize_settlements(payload.get("settlements") or [])
                result = aggregate(
                    expenses,
                    members,
                    settlements,
                    current_app.config["REMAINDER_RULE"],
                    current_app.config["MAX_EXPENSE_AMOUNT"],
                )
                if not result.ok:
                    return _validation_failure(result.errors)
                balances = list(result.balances)
                warnings = [warning.to_dict() for warning in result.warnings]
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        suggestions = optimize(balances, current_app.config["SETTLEMENT_TOLERANCE"])
        names = _member_names(members)
        current_app.logger.debug("Suggested %d settlements for %d balances", len(suggestions), len(balances))
        return jsonify(
            {
                "suggestions": [
                    {
                        "from_member_id": suggestion.from_member,
                        "from_name": names.get(suggestion.from_member),
                        "to_member_id": suggestion.to_member,
                        "to_name": names.get(suggestion.to_member),
                        "amount": externalize(suggestion.amount),
                    }
                    for suggestion in suggestions
                ],
                "net_positions": [
                    {"member_id": member_id, "net_balance": externalize(quantize_money(amount))}
                    for member_id, amount in net_positions(balances).items()
                ],
                "summary": summarize(balances, suggestions),
                "warnings": warnings,
            }
        )

    @app.post("/api/drafts/apply")
    def apply_draft_edits():
        payload = _json_payload()
        if payload is None:
            return jsonify({"error": "invalid_json"}), 400

        try:
            members = _normalize_members(payload.get("members") or [])
            draft = _normalize_draft(payload.get("draft") or {})
            edits = [_normalize_edit(item) for item in payload.get("edits") or []]
            draft = apply_edits(draft, edits)
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        result = preview(
            draft, members, current_app.config["REMAINDER_RULE"], current_app.config["MAX_EXPENSE_AMOUNT"]
        )
        response: Dict[str, Any] = {"draft": _serialize_draft(draft)}
        if result.ok:
            response["preview"] = _serialize_split_result(result, members)
        else:
            response["preview"] = None
            response["errors"] = [issue.to_dict() for issue in result.errors]
        return jsonify(response)


def _json_payload() -> Optional[Dict[str, Any]]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return None
    return payload


def _validation_failure(issues: Iterable[ValidationIssue]):
    issues = list(issues)
    return jsonify({"error": issues[0].code, "errors": [issue.to_dict() for issue in issues]}), 400


# ---------- Payload normalization ----------


def _to_decimal(value: Any, error: str) -> Decimal:
    if value is None:
        raise ValueError(error)
    try:
        return to_decimal(value)
    except ValueError:
        raise ValueError(error) from None


def _to_money(value: Any, error: str = "invalid_amount") -> Decimal:
    return quantize_money(_to_decimal(value, error))


def _normalize_id(value: Any, error: str = "invalid_member_id") -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValueError(error)
    if isinstance(value, str) and not value.strip():
        raise ValueError(error)
    return value


def _normalize_ids(payload: Any) -> Tuple[Any, ...]:
    if not isinstance(payload, list):
        raise ValueError("invalid_member_list")
    return tuple(_normalize_id(item) for item in payload)


def _normalize_members(payload: Any) -> List[Member]:
    if not isinstance(payload, list):
        raise ValueError("invalid_member_payload")

    members: List[Member] = []
    seen = set()
    for item in payload:
        if not isinstance(item, dict):
            raise ValueError("invalid_member_payload")
        member_id = _normalize_id(item.get("id", item.get("user_id")))
        if member_id in seen:
            raise ValueError("duplicate_member")
        income = item.get("income")
        weight = item.get("weight")
        members.append(
            Member(
                id=member_id,
                name=str(item.get("name") or member_id),
                income=_to_decimal(income, "invalid_income") if income is not None else None,
                weight=_to_decimal(weight, "invalid_weight") if weight is not None else None,
            )
        )
        seen.add(member_id)
    return members


def _normalize_payers(payload: Dict[str, Any], amount: Decimal) -> Tuple[Payer, ...]:
    contributors = payload.get("payers") or payload.get("contributors")
    if contributors:
        if not isinstance(contributors, list):
            raise ValueError("invalid_contribution_payload")
        payers = []
        for item in contributors:
            if not isinstance(item, dict):
                raise ValueError("invalid_contribution_payload")
            member_id = _normalize_id(item.get("member_id", item.get("user_id")), "invalid_contribution_payload")
            amount_paid = _to_money(item.get("amount_paid", item.get("amount")), "invalid_contribution_payload")
            payers.append(Payer(member_id=member_id, amount_paid=amount_paid))
        return tuple(payers)

    paid_by = payload.get("paid_by")
    if paid_by is None:
        return ()
    return (Payer(member_id=_normalize_id(paid_by, "invalid_payer"), amount_paid=amount),)


def _normalize_values(payload: Any, participants: Tuple[Any, ...]) -> Dict[Any, Decimal]:
    """Per-member strategy values, given as an object or a list of entries."""
    if payload is None:
        return {}

    # JSON object keys are always strings; map them back onto participant ids
    lookup = {str(member_id): member_id for member_id in participants}
    values: Dict[Any, Decimal] = {}
    if isinstance(payload, dict):
        for key, value in payload.items():
            values[lookup.get(str(key), key)] = _to_decimal(value, "invalid_strategy_value")
    elif isinstance(payload, list):
        for item in payload:
            if not isinstance(item, dict):
                raise ValueError("invalid_strategy_value")
            member_id = _normalize_id(item.get("member_id", item.get("user_id")), "invalid_strategy_value")
            values[member_id] = _to_decimal(item.get("value"), "invalid_strategy_value")
    else:
        raise ValueError("invalid_strategy_value")
    return values


def _normalize_expense(payload: Any) -> Expense:
    if not isinstance(payload, dict):
        raise ValueError("invalid_expense_payload")

    amount = _to_money(payload.get("amount", payload.get("total_amount")))
    participants = _normalize_ids(payload.get("participants", payload.get("split_among")) or [])

    kind = payload.get("strategy") or payload.get("split_type") or "equal"
    if kind not in STRATEGY_KINDS:
        raise ValueError("unknown_strategy")
    values = _normalize_values(payload.get("strategy_values"), participants)
    excluded = frozenset(_normalize_ids(payload.get("excluded_members") or []))

    return Expense(
        id=payload.get("id"),
        total_amount=amount,
        payers=_normalize_payers(payload, amount),
        participants=participants,
        strategy=build_strategy(kind, values, excluded),
        title=str(payload.get("title") or "").strip(),
    )


def _normalize_settlements(payload: Any) -> List[RecordedSettlement]:
    if not isinstance(payload, list):
        raise ValueError("invalid_settlement_payload")

    settlements = []
    for item in payload:
        if not isinstance(item, dict):
            raise ValueError("invalid_settlement_payload")
        settlements.append(
            RecordedSettlement(
                from_member=_normalize_id(item.get("from_member_id"), "invalid_settlement_payload"),
                to_member=_normalize_id(item.get("to_member_id"), "invalid_settlement_payload"),
                amount=_to_money(item.get("amount"), "invalid_settlement_payload"),
            )
        )
    return settlements


def _normalize_balances(payload: Any) -> List[PairwiseBalance]:
    if not isinstance(payload, list):
        raise ValueError("invalid_balance_payload")

    balances = []
    for item in payload:
        if not isinstance(item, dict):
            raise ValueError("invalid_balance_payload")
        balances.append(
            PairwiseBalance(
                member_a=_normalize_id(item.get("member_a"), "invalid_balance_payload"),
                member_b=_normalize_id(item.get("member_b"), "invalid_balance_payload"),
                amount=_to_decimal(item.get("amount"), "invalid_balance_payload"),
            )
        )
    return balances


def _normalize_draft(payload: Any) -> ExpenseDraft:
    if not isinstance(payload, dict):
        raise ValueError("invalid_draft_payload")

    participants = _normalize_ids(payload.get("participants") or [])
    amount = _to_money(payload["amount"]) if payload.get("amount") is not None else Decimal("0")
    kind = payload.get("strategy") or "equal"
    if kind not in STRATEGY_KINDS:
        raise ValueError("unknown_strategy")
    return ExpenseDraft(
        title=str(payload.get("title") or ""),
        amount=amount,
        payers=_normalize_payers(payload, amount),
        participants=participants,
        strategy=kind,
        values=_normalize_values(payload.get("strategy_values"), participants),
        excluded=frozenset(_normalize_ids(payload.get("excluded_members") or [])),
        expense_id=payload.get("id"),
    )


def _normalize_edit(payload: Any):
    if not isinstance(payload, dict):
        raise ValueError("invalid_edit_payload")

    edit_type = payload.get("type")
    if edit_type == "set_title":
        return SetTitle(title=str(payload.get("title") or ""))
    if edit_type == "set_amount":
        return SetAmount(amount=_to_money(payload.get("amount")))
    if edit_type == "set_payers":
        payers = payload.get("payers")
        if not isinstance(payers, list):
            raise ValueError("invalid_contribution_payload")
        return SetPayers(payers=_normalize_payers({"payers": payers}, Decimal("0")))
    if edit_type == "set_participants":
        return SetParticipants(participants=_normalize_ids(payload.get("participants") or []))
    if edit_type == "set_strategy":
        kind = payload.get("strategy")
        if kind not in STRATEGY_KINDS:
            raise ValueError("unknown_strategy")
        return SetStrategy(strategy=kind)
    if edit_type == "set_strategy_value":
        value = payload.get("value")
        return SetStrategyValue(
            member_id=_normalize_id(payload.get("member_id")),
            value=_to_decimal(value, "invalid_strategy_value") if value is not None else None,
        )
    if edit_type == "toggle_excluded":
        return ToggleExcluded(member_id=_normalize_id(payload.get("member_id")))
    raise ValueError("invalid_edit_payload")


# ---------- Serialization ----------


def _member_names(members: Iterable[Member]) -> Dict[Any, str]:
    return {member.id: member.name for member in members}


def _serialize_split_result(result: SplitResult, members: Iterable[Member]) -> Dict[str, Any]:
    names = _member_names(members)
    audit = result.audit
    return {
        "shares": [
            {
                "member_id": share.member_id,
                "name": names.get(share.member_id),
                "amount": externalize(share.amount),
                "percentage": externalize(share.percentage),
            }
            for share in result.shares
        ],
        "warnings": [warning.to_dict() for warning in result.warnings],
        "audit": {
            "strategy": audit.strategy,
            "total_amount": externalize(audit.total_amount),
            "member_count": audit.member_count,
            "calculated_total": externalize(audit.calculated_total),
            "difference": externalize(audit.difference),
            "corrected_member_id": audit.corrected_member,
        }
        if audit is not None
        else None,
    }


def _serialize_balance(balance: PairwiseBalance, names: Mapping[Any, str]) -> Dict[str, Any]:
    return {
        "member_a": balance.member_a,
        "member_a_name": names.get(balance.member_a),
        "member_b": balance.member_b,
        "member_b_name": names.get(balance.member_b),
        "amount": externalize(quantize_money(balance.amount)),
    }


def _serialize_draft(draft: ExpenseDraft) -> Dict[str, Any]:
    return {
        "id": draft.expense_id,
        "title": draft.title,
        "amount": externalize(draft.amount),
        "payers": [
            {"member_id": payer.member_id, "amount_paid": externalize(payer.amount_paid)} for payer in draft.payers
        ],
        "participants": list(draft.participants),
        "strategy": draft.strategy,
        "strategy_values": [
            {"member_id": member_id, "value": externalize(value)} for member_id, value in draft.values.items()
        ],
        "excluded_members": [member_id for member_id in draft.participants if member_id in draft.excluded],
    }


app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
