"""
Audit Service

Records who changed which trip, vehicle or route. Entries join the caller's
transaction; they are committed or rolled back with the change they describe.
"""

from typing import Optional, Dict, Any
import logging
import json
from flask import request, has_request_context
from models import db, AuditLog

logger = logging.getLogger(__name__)

class AuditService:
    """Service class for centralized audit logging"""

    @staticmethod
    def log_action(action: str,
                  entity_type: Optional[str] = None,
                  entity_id: Optional[int] = None,
                  details: Optional[Dict[str, Any]] = None,
                  user_id: Optional[int] = None) -> AuditLog:
        """
        Log an audit event with request context.

        Args:
            action: Action performed (e.g., 'start_trip', 'delete_vehicle')
            entity_type: Type of entity affected (e.g., 'trip', 'vehicle')
            entity_id: ID of the affected entity
            details: Additional details about the action
            user_id: ID of user performing the action

        Returns:
            AuditLog: the pending entry
        """
        audit = AuditLog()
        audit.user_id = user_id
        audit.action = action
        audit.entity_type = entity_type
        audit.entity_id = entity_id
        audit.new_values = json.dumps(details, default=str) if details else None

        if has_request_context():
            audit.ip_address = request.remote_addr
            audit.user_agent = request.headers.get('User-Agent', '')[:255]

        # Let outer transaction handle the commit
        db.session.add(audit)
        logger.debug(f"Audit logged: {action} on {entity_type} {entity_id} by user {user_id}")
        return audit
