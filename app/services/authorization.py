"""Resource-level authorization: which verified identities may touch which device."""

from app.models.user import ROLE_ADMIN, ROLE_CLIENT
from app.schemas.auth import Identity


def can_access(identity: Identity, resource_id: str) -> bool:
    """
    Admins reach every resource; clients only the ids in their assigned list.

    Matching is exact: no case folding, prefixes or wildcards.
    """
    if identity.role == ROLE_ADMIN:
        return True
    if identity.role == ROLE_CLIENT:
        return resource_id in identity.assigned_resources
    return False
