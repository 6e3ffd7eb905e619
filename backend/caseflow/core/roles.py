# caseflow/core/roles.py

import enum


class RoleScope(str, enum.Enum):
    GLOBAL = "global"              # not tied to a membership row (super admin)
    ORGANIZATION = "organization"  # granted through a membership


ROLE_SUPER_ADMIN = "super-admin"
ROLE_ADMIN = "admin"
ROLE_JUDGE = "judge"
ROLE_CLERK = "clerk"
ROLE_VIEWER = "viewer"
ROLE_REGIONAL_SUPERVISOR = "regional-supervisor"
