"""
ComplyTrack - Auditor Resolution

Maps the auditor selector of an audit-creation request to a concrete
Auditor row. Runs before the audit itself is written.

- existing: look the auditor up by id
- internal: one Auditor per internal user, looked up by user_id or created
  from the user's name and email
- external: always a fresh row; external emails are not an identity key
"""

import logging
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import Auditor
from app.models.user import User
from app.schemas.audit import ExistingAuditor, ExternalAuditor, InternalAuditor
from app.utils.error_handling import AuditorNotFoundException, UserNotFoundException

logger = logging.getLogger(__name__)

DEFAULT_EXTERNAL_FIRM = "External Firm"


class AuditorResolver:
    """Resolves auditor selectors inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(
        self,
        selector: Union[ExistingAuditor, InternalAuditor, ExternalAuditor],
    ) -> Auditor:
        if isinstance(selector, ExistingAuditor):
            return await self._existing(selector)
        if isinstance(selector, InternalAuditor):
            return await self._internal(selector)
        if isinstance(selector, ExternalAuditor):
            return await self._external(selector)
        raise TypeError(f"Unsupported auditor selector: {type(selector).__name__}")

    async def _existing(self, selector: ExistingAuditor) -> Auditor:
        auditor = await self.db.get(Auditor, selector.auditor_id)
        if not auditor:
            raise AuditorNotFoundException(selector.auditor_id)
        return auditor

    async def _find_internal(self, user_id) -> Optional[Auditor]:
        result = await self.db.execute(select(Auditor).where(Auditor.user_id == user_id))
        return result.scalar_one_or_none()

    async def _internal(self, selector: InternalAuditor) -> Auditor:
        auditor = await self._find_internal(selector.user_id)
        if auditor:
            return auditor

        user = await self.db.get(User, selector.user_id)
        if not user:
            raise UserNotFoundException(
                selector.user_id,
                message=f"User with ID '{selector.user_id}' not found for internal auditor",
            )

        auditor = Auditor(
            name=user.name,
            email=user.email,
            user_id=user.id,
            is_external=False,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(auditor)
        except IntegrityError:
            # A concurrent request created the row between lookup and insert
            logger.info(f"Internal auditor for user {selector.user_id} already exists, reusing it")
            return await self._find_internal(selector.user_id)
        logger.info(f"Created internal auditor {auditor.id} for user {user.id}")
        return auditor

    async def _external(self, selector: ExternalAuditor) -> Auditor:
        auditor = Auditor(
            name=selector.name,
            email=str(selector.email),
            is_external=True,
            firm_name=selector.firm_name or DEFAULT_EXTERNAL_FIRM,
        )
        self.db.add(auditor)
        await self.db.flush()
        logger.info(f"Created external auditor {auditor.id} ({auditor.firm_name})")
        return auditor
