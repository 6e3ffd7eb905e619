# Import models here so metadata.create_all can discover every table.
from caseflow.models.user import User  # noqa: F401

# Tenancy: organizations, memberships, active-organization pointer
from caseflow.models.organization import Organization  # noqa: F401
from caseflow.models.membership import Membership  # noqa: F401
from caseflow.models.active_organization import ActiveOrganizationPointer  # noqa: F401

# Permission catalog
from caseflow.models.rbac import Permission, Role, RolePermission  # noqa: F401

# Super admin allow-list + audit trail
from caseflow.models.system_admin import SystemAdmin, SystemAdminAuditLog  # noqa: F401
