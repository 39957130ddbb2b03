from flask import Blueprint, jsonify, g, request

from security.rbac import RoleName, require_roles
from services.reservations import get_engine
from utils.audit import log_event
from models import db
from models.audit_log import AuditLog
from models.booking import BOOKING_STATUSES
from models.user import User, Role

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


@admin_bp.get("/bookings")
@require_roles(RoleName.ADMIN.value)
def list_all_bookings():
    status = request.args.get("status")
    if status and status not in BOOKING_STATUSES:
        return jsonify(error="Invalid status"), 400

    limit = request.args.get("limit", type=int) or 200
    rows = get_engine().all_bookings(status=status, limit=max(1, min(limit, 500)))
    return jsonify([b.to_dict() for b in rows]), 200


@admin_bp.post("/bookings/complete-elapsed")
@require_roles(RoleName.ADMIN.value)
def complete_elapsed():
    completed = get_engine().complete_elapsed()
    log_event("ADMIN_COMPLETE_ELAPSED", user_id=g.user.id, metadata={"completed": completed})
    return jsonify(completed=completed), 200


@admin_bp.get("/users")
@require_roles(RoleName.ADMIN.value)
def list_users():
    role_filter = (request.args.get("role") or "").strip().upper()
    q = User.query
    if role_filter:
        q = q.join(User.roles).filter(Role.name == role_filter)

    users = q.order_by(User.created_at.desc()).limit(200).all()
    return jsonify([u.to_dict() for u in users]), 200


@admin_bp.post("/users/<int:user_id>/roles")
@require_roles(RoleName.ADMIN.value)
def update_user_roles(user_id: int):
    data = request.get_json(silent=True) or {}
    roles = data.get("roles")
    if not isinstance(roles, list) or not roles:
        return jsonify(error="roles must be a non-empty list"), 400

    role_names = {name.strip().upper() for name in roles if isinstance(name, str) and name.strip()}
    unknown = role_names - {r.value for r in RoleName}
    if not role_names or unknown:
        return jsonify(error="Unknown role(s)", missing=sorted(unknown)), 400

    user = db.session.get(User, user_id)
    if not user:
        return jsonify(error="User not found"), 404

    if user.id == g.user.id and RoleName.ADMIN.value not in role_names:
        return jsonify(error="Cannot remove your own ADMIN role"), 403

    user.roles = Role.query.filter(Role.name.in_(role_names)).all()
    db.session.commit()

    log_event("ADMIN_ROLES_UPDATE", user_id=g.user.id, entity="user", entity_id=user.id, metadata={"roles": sorted(role_names)})
    return jsonify(id=user.id, roles=sorted(user.role_names)), 200


@admin_bp.get("/audit-logs")
@require_roles(RoleName.ADMIN.value)
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))

    action = request.args.get("action")
    user_id = request.args.get("user_id", type=int)
    entity = request.args.get("entity")

    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action)
    if user_id is not None:
        q = q.filter(AuditLog.user_id == user_id)
    if entity:
        q = q.filter(AuditLog.entity == entity)

    rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    return jsonify([r.to_dict() for r in rows]), 200
