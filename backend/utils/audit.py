"""
Structured audit logging.

Every state change the engine makes (registrations, variable and template
edits, IPAM allocations, renders) is written as one JSON object to the
dedicated 'audit' logger. The request id set by the HTTP middleware is
carried through async calls with contextvars so that audit lines can be
joined with the access log.
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional


_request_id_context: ContextVar[Optional[str]] = ContextVar(
    'request_id', default=None
)

# Who is acting: "device:<uuid>" on controller calls, "admin" otherwise
_actor_context: ContextVar[Optional[str]] = ContextVar(
    'actor', default=None
)


class AuditLogger:
    """
    Writes audit events to the 'audit' logger.

    Convenience methods cover the engine's event types; ``log`` is the
    general form they all funnel into.
    """

    def __init__(self):
        self.logger = logging.getLogger('audit')

    def set_request_id(self, request_id: str) -> None:
        _request_id_context.set(request_id)

    def get_request_id(self) -> Optional[str]:
        return _request_id_context.get()

    def set_actor(self, actor: str) -> None:
        _actor_context.set(actor)

    def get_actor(self) -> Optional[str]:
        return _actor_context.get()

    def log(
        self,
        action: str,
        resource: str,
        resource_id: str,
        status: str = 'success',
        details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> None:
        """
        Log one structured audit event.

        Args:
            action: What happened (e.g. 'REGISTER', 'UPSERT', 'ALLOCATE')
            resource: Kind of object affected (e.g. 'Device', 'GroupVariable')
            resource_id: Identifier of the affected object
            status: Outcome ('success', 'failure', 'fallback')
            details: Extra context
            actor: Overrides the actor taken from the request context
        """
        event = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'action': action,
            'actor': actor or self.get_actor() or 'admin',
            'resource': resource,
            'resource_id': resource_id,
            'status': status,
            'request_id': self.get_request_id(),
            'details': details or {},
        }
        self.logger.info(json.dumps(event, default=str))

    def log_registration(
        self,
        device_uuid: str,
        backend: str,
        mac_address: str,
        is_new: bool,
    ) -> None:
        self.log(
            action='REGISTER',
            resource='Device',
            resource_id=device_uuid,
            details={
                'backend': backend,
                'mac_address': mac_address,
                'is_new': is_new,
            },
            actor=f"device:{device_uuid}",
        )

    def log_registration_denied(self, backend: str, mac_address: str) -> None:
        self.log(
            action='REGISTER',
            resource='Device',
            resource_id=mac_address,
            status='failure',
            details={'backend': backend, 'reason': 'unrecognized secret'},
            actor='anonymous',
        )

    def log_status_report(
        self,
        device_uuid: str,
        status: str,
        config_sha: Optional[str] = None,
    ) -> None:
        details = {'status': status}
        if config_sha:
            details['config_sha'] = config_sha
        self.log(
            action='REPORT_STATUS',
            resource='Device',
            resource_id=device_uuid,
            details=details,
            actor=f"device:{device_uuid}",
        )

    def log_variable_change(
        self,
        operation: str,
        scope: str,
        owner_id: str,
        keys: list[str],
    ) -> None:
        """
        Log variable upserts or deletions.

        Values are never logged, only key names; variables routinely hold
        secrets such as Wi-Fi passphrases.
        """
        self.log(
            action=operation,
            resource=f"{scope.capitalize()}Variable",
            resource_id=str(owner_id),
            details={'keys': sorted(keys)},
        )

    def log_template_change(
        self,
        operation: str,
        template_id: int,
        name: Optional[str] = None,
    ) -> None:
        details = {}
        if name:
            details['name'] = name
        self.log(
            action=operation,
            resource='Template',
            resource_id=str(template_id),
            details=details,
        )

    def log_membership_change(self, operation: str, device_uuid: str, group_id: int) -> None:
        self.log(
            action=operation,
            resource='DeviceGroup',
            resource_id=device_uuid,
            details={'group_id': group_id},
        )

    def log_assignment_change(
        self,
        operation: str,
        group_id: int,
        template_id: int,
        order: Optional[int] = None,
        enabled: Optional[bool] = None,
    ) -> None:
        details: Dict[str, Any] = {'template_id': template_id}
        if order is not None:
            details['order'] = order
        if enabled is not None:
            details['enabled'] = enabled
        self.log(
            action=operation,
            resource='GroupTemplateAssignment',
            resource_id=str(group_id),
            details=details,
        )

    def log_override_change(self, operation: str, device_uuid: str, template_id: int) -> None:
        self.log(
            action=operation,
            resource='DeviceTemplateOverride',
            resource_id=device_uuid,
            details={'template_id': template_id},
        )

    def log_allocation(
        self,
        resource: str,
        resource_id: str,
        value: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a prefix or address allocation."""
        merged = {'value': value}
        if details:
            merged.update(details)
        self.log(
            action='ALLOCATE',
            resource=resource,
            resource_id=resource_id,
            details=merged,
        )

    def log_release(self, allocation_id: int, device_uuid: str, address: str) -> None:
        self.log(
            action='RELEASE',
            resource='IPAllocation',
            resource_id=str(allocation_id),
            details={'device_uuid': device_uuid, 'address': address},
        )

    def log_render(
        self,
        device_uuid: str,
        status: str,
        checksum: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        details = {}
        if checksum:
            details['checksum'] = checksum
        if error_message:
            details['error_message'] = error_message
        self.log(
            action='RENDER',
            resource='ConfigBundle',
            resource_id=device_uuid,
            status=status,
            details=details,
        )


audit = AuditLogger()
