# Target directory: the profiles an operator can assess.
from typing import List, Optional

from ..database import db
from ..models import Profile


class SqlTargetDirectory:
    def list_targets(self, org_id: str, clinician_id: Optional[str] = None) -> List[dict]:
        """
        Targets of an organisation, ordered by display name.

        With clinician_id, only targets assigned to that clinician are listed.
        """
        rows = Profile.query.filter_by(org_id=org_id).order_by(Profile.display_name).all()
        if clinician_id:
            rows = [r for r in rows if clinician_id in (r.assigned_clinician_ids or [])]
        return [r.to_target() for r in rows]

    def get_target(self, target_id: str, org_id: Optional[str] = None) -> Optional[dict]:
        row = db.session.get(Profile, target_id)
        if row is None or (org_id is not None and row.org_id != org_id):
            return None
        return row.to_target()
