# backend/app/seeds/seed_data.py
#   Seed functions to populate the database with demo assessment targets.
import logging

from ..database import db, engine, get_db_session
from ..models import Profile

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_ORG_ID = "org-demo"

DEFAULT_PROFILES = [
    {"id": "profile-001", "display_name": "Alex Morgan", "group_id": "group-running", "category_id": "athlete",
     "assigned_clinician_ids": ["clinician-1"]},
    {"id": "profile-002", "display_name": "Sam Lee", "group_id": "group-rehab", "category_id": "patient",
     "assigned_clinician_ids": ["clinician-1", "clinician-2"]},
    {"id": "profile-003", "display_name": "Jordan Diaz", "group_id": "group-rehab", "category_id": "patient",
     "assigned_clinician_ids": ["clinician-2"]},
]


def seed_profiles(org_id: str = DEFAULT_ORG_ID, profiles=None) -> int:
    """Insert missing demo profiles. Returns how many rows were created."""
    db.metadata.create_all(engine)
    created = 0
    with get_db_session() as session:
        for data in profiles or DEFAULT_PROFILES:
            if session.get(Profile, data["id"]) is not None:
                continue
            session.add(Profile(org_id=org_id, summary_json={}, **data))
            created += 1
        session.commit()
    logger.info("Seeded %d profile(s) for %s", created, org_id)
    return created
