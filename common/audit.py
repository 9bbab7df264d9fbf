from core.models import AuditLog

from common.utils import to_json_compatible


def get_request_id(request):
    return getattr(request, "request_id", None)


def _snapshot(value):
    if value is None:
        return None
    return to_json_compatible(value)


def create_audit_log(
    *,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    """Record one billing mutation; snapshots are stored as JSON-safe dicts."""
    return AuditLog.objects.create(
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        before_snapshot=_snapshot(before_snapshot),
        after_snapshot=_snapshot(after_snapshot),
        request_id=request_id,
    )


def create_audit_log_from_request(request, *, action, entity, entity_id=None, before_snapshot=None, after_snapshot=None):
    return create_audit_log(
        action=action,
        entity=entity,
        entity_id=entity_id,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=get_request_id(request),
    )
