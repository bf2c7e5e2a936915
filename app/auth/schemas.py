from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Lightweight representation of the authenticated user.
    Profile ids (student / teacher / parent) are never taken from the client; they are
    resolved from this user in app.auth.profiles.
    """

    id: UUID
    tenant_id: UUID
    role: str
