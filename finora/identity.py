"""
Identity Resolution

The identity provider authenticates users; we keep a local User row
linked to its opaque id. Every service operation starts by resolving
that id to a local user.

DESIGN DECISION: Resolution order is external id, then email, then
create. A user who signs in with a new provider id but a known email
is re-linked, not duplicated.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from finora.audit import AuditLogger
from finora.errors import NotFound, Unauthorized
from finora.models.ledger import User
from finora.services.storage import DuplicateError, LedgerStorageInterface


class IdentityClaims(BaseModel):
    """What the identity provider tells us about the signed-in user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    external_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, max_length=320)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class IdentityService:
    """Maps external identities to local users."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger

    async def check_user(self, claims: Optional[IdentityClaims]) -> Optional[User]:
        """
        Find or provision the local user for a signed-in identity.

        Returns None when nobody is signed in.
        """
        if claims is None:
            return None

        created = False
        try:
            async with self._storage.unit_of_work() as uow:
                user = await uow.get_user_by_external_id(claims.external_id)
                if user is None:
                    user = await uow.get_user_by_email(claims.email)
                    if user is not None:
                        await uow.link_external_id(user.id, claims.external_id)
                        user = user.model_copy(update={"external_id": claims.external_id})
                    else:
                        user = User(
                            external_id=claims.external_id,
                            email=claims.email,
                            name=claims.full_name or None,
                            image_url=claims.image_url,
                        )
                        await uow.insert_user(user)
                        created = True
        except DuplicateError:
            # Created by a concurrent sign-in with the same email
            user = await self._storage.get_user_by_email(claims.email)
            if user is None:
                raise
            created = False

        if created and self._audit_logger:
            await self._audit_logger.log_user_provisioned(user.id, user.email)

        return user

    async def require_user(self, external_id: Optional[str]) -> User:
        """
        Resolve the caller of a service operation.

        Raises:
            Unauthorized: No identity supplied
            NotFound: Identity has no local user
        """
        if not external_id:
            raise Unauthorized()

        user = await self._storage.get_user_by_external_id(external_id)
        if user is None:
            raise NotFound("User not found")
        return user
