# seed_profiles.py
#   Standalone script to seed the database with demo assessment targets.
import os
import sys
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from backend.app.seeds.seed_data import seed_profiles

if __name__ == "__main__":
    count = seed_profiles(os.getenv("SEED_ORG_ID", "org-demo"))
    print(f"Created {count} profile(s)")
