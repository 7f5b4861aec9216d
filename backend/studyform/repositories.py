"""Repository classes encapsulating database operations.

Drafts are the only aggregate; the repository commits and refreshes on
every write so handlers can return the managed instance directly.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from sqlmodel import Session, select
from . import models


class FormDraftRepository:
    """CRUD operations for `FormDraft` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, draft: models.FormDraft) -> models.FormDraft:
        """Persist a new draft and return the managed instance."""
        self.session.add(draft)
        self.session.commit()
        self.session.refresh(draft)
        return draft

    def get(self, draft_id: str) -> Optional[models.FormDraft]:
        """Get a `FormDraft` by primary key."""
        return self.session.get(models.FormDraft, draft_id)

    def get_for_owner(self, draft_id: str, owner_id: str) -> Optional[models.FormDraft]:
        """Return the draft only when it belongs to `owner_id`."""
        draft = self.get(draft_id)
        if not draft or draft.owner_id != owner_id:
            return None
        return draft

    def save(self, draft: models.FormDraft) -> models.FormDraft:
        """Write back a mutated draft, bumping `updated_at`."""
        draft.updated_at = datetime.now(timezone.utc)
        self.session.add(draft)
        self.session.commit()
        self.session.refresh(draft)
        return draft

    def delete(self, draft: models.FormDraft) -> None:
        self.session.delete(draft)
        self.session.commit()

    def list_expired(self, ttl_seconds: int) -> List[models.FormDraft]:
        """Return drafts untouched for more than `ttl_seconds`."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=ttl_seconds)
        stmt = select(models.FormDraft).where(models.FormDraft.updated_at < cutoff)
        return self.session.exec(stmt).all()
