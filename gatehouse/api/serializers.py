"""
gatehouse.api.serializers — ORM rows → JSON dicts
==================================================

Shared by every router so a pass looks the same whether it comes back
from ``generate``, ``check-in`` or ``visitor-logs``.
"""

from __future__ import annotations

from gatehouse.constants import isoformat
from gatehouse.database.models import (
    AdminLog,
    Estate,
    EstateMember,
    GateEvent,
    User,
    Visitor,
    VisitorAlert,
    VisitorPass,
)


def _id(value) -> str | None:
    return str(value) if value is not None else None


def user_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "full_name": u.full_name,
        "phone_number": u.phone_number,
        "email": u.email,
        "created_at": isoformat(u.created_at),
    }


def estate_dict(e: Estate) -> dict:
    return {
        "id": str(e.id),
        "name": e.name,
        "address": e.address,
        "created_at": isoformat(e.created_at),
    }


def member_dict(m: EstateMember) -> dict:
    return {
        "estate_id": str(m.estate_id),
        "user_id": str(m.user_id),
        "role": m.role,
        "created_at": isoformat(m.created_at),
    }


def visitor_dict(v: Visitor) -> dict:
    return {
        "id": str(v.id),
        "estate_id": str(v.estate_id),
        "full_name": v.full_name,
        "phone_number": v.phone_number,
        "email": v.email,
        "photo_url": v.photo_url,
        "vehicle_registration": v.vehicle_registration,
        "vehicle_make": v.vehicle_make,
        "vehicle_color": v.vehicle_color,
        "id_card_number": v.id_card_number,
        "id_card_type": v.id_card_type,
        "company_name": v.company_name,
        "purpose": v.purpose,
        "notes": v.notes,
        "is_blacklisted": v.is_blacklisted,
        "blacklist_reason": v.blacklist_reason,
        "created_at": isoformat(v.created_at),
        "updated_at": isoformat(v.updated_at),
    }


def pass_dict(p: VisitorPass, *, include_visitor: bool = True) -> dict:
    data = {
        "id": str(p.id),
        "visitor_id": str(p.visitor_id),
        "host_id": str(p.host_id),
        "estate_id": str(p.estate_id),
        "qr_code": p.qr_code,
        "access_code": p.access_code,
        "delivery_method": p.delivery_method,
        "status": p.status,
        "expected_arrival": isoformat(p.expected_arrival),
        "expires_at": isoformat(p.expires_at),
        "issued_at": isoformat(p.issued_at),
        "checked_in_at": isoformat(p.checked_in_at),
        "checked_out_at": isoformat(p.checked_out_at),
        "entry_gate": p.entry_gate,
        "exit_gate": p.exit_gate,
        "guest_count": p.guest_count,
        "purpose": p.purpose,
        "notes": p.notes,
        "revoked_at": isoformat(p.revoked_at),
        "revoked_by": _id(p.revoked_by),
        "revocation_reason": p.revocation_reason,
        "created_at": isoformat(p.created_at),
    }
    if include_visitor and p.visitor is not None:
        data["visitor"] = visitor_dict(p.visitor)
    return data


def gate_pass_dict(p: VisitorPass) -> dict:
    """What a gate scanner is shown: no token, no code, no notes."""
    v = p.visitor
    return {
        "id": str(p.id),
        "status": p.status,
        "expected_arrival": isoformat(p.expected_arrival),
        "expires_at": isoformat(p.expires_at),
        "guest_count": p.guest_count,
        "purpose": p.purpose,
        "visitor": {
            "id": str(v.id),
            "full_name": v.full_name,
            "photo_url": v.photo_url,
            "vehicle_registration": v.vehicle_registration,
            "vehicle_make": v.vehicle_make,
            "vehicle_color": v.vehicle_color,
        },
    }


def alert_dict(a: VisitorAlert) -> dict:
    return {
        "id": str(a.id),
        "estate_id": str(a.estate_id),
        "visitor_id": _id(a.visitor_id),
        "visitor_pass_id": _id(a.visitor_pass_id),
        "type": a.type,
        "severity": a.severity,
        "status": a.status,
        "title": a.title,
        "description": a.description,
        "location": a.location,
        "gate_name": a.gate_name,
        "ip_address": a.ip_address,
        "user_agent": a.user_agent,
        "resolved_by": _id(a.resolved_by),
        "resolution_notes": a.resolution_notes,
        "created_at": isoformat(a.created_at),
        "updated_at": isoformat(a.updated_at),
        "resolved_at": isoformat(a.resolved_at),
    }


def gate_event_dict(e: GateEvent) -> dict:
    return {
        "id": e.id,
        "visitor_pass_id": _id(e.visitor_pass_id),
        "event_type": e.event_type,
        "method": e.method,
        "gate_name": e.gate_name,
        "ip_address": e.ip_address,
        "actor_id": _id(e.actor_id),
        "detail": e.detail,
        "created_at": isoformat(e.created_at),
    }


def audit_dict(row: AdminLog) -> dict:
    return {
        "id": row.id,
        "actor_id": _id(row.actor_id),
        "action_type": row.action_type,
        "target_table": row.target_table,
        "target_id": row.target_id,
        "before": row.before_snapshot,
        "after": row.after_snapshot,
        "ip_address": row.ip_address,
        "reason": row.reason,
        "timestamp": isoformat(row.timestamp),
    }
