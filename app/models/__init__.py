from .org import Org
from .user import User
from .org_membership import OrgMembership, ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEWER, ROLE_CHOICES
from .plan import EmergencyPlan, PlanStatus, PLAN_TRANSITIONS
from .incident import Incident, IncidentUpdate, IncidentStatus, INCIDENT_TRANSITIONS, UPDATE_TYPES
from .audit_log import AuditLog

__all__ = [
    "Org",
    "User",
    "OrgMembership",
    "ROLE_ADMIN",
    "ROLE_EDITOR",
    "ROLE_VIEWER",
    "ROLE_CHOICES",
    "EmergencyPlan",
    "PlanStatus",
    "PLAN_TRANSITIONS",
    "Incident",
    "IncidentUpdate",
    "IncidentStatus",
    "INCIDENT_TRANSITIONS",
    "UPDATE_TYPES",
    "AuditLog",
]
