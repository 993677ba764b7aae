# backend/create_initial_admin.py

import os

from skillsdb.database import Base, SessionLocal, engine
from skillsdb.apps.accounts import models, services


def main() -> None:
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        org_code = os.getenv("INITIAL_ORG_CODE", "DEFAULT")
        org_slug = os.getenv("INITIAL_ORG_SLUG", "default")
        email = os.getenv("INITIAL_ADMIN_EMAIL", "admin@skills.local")
        password = os.getenv("INITIAL_ADMIN_PASSWORD", "ChangeMe123!")

        org = services.get_organisation_by_slug(db, org_slug)
        if not org:
            org = models.Organisation(code=org_code, name=f"{org_code} organisation", login_slug=org_slug)
            db.add(org)
            db.flush()
            print(f"[OK] Created organisation {org.code} (slug={org.login_slug})")

        existing = (
            db.query(models.User)
            .filter(models.User.org_id == org.id, models.User.email == email.lower())
            .first()
        )
        if existing:
            print(f"[INFO] User already exists: id={existing.id}, email={existing.email}")
            db.commit()
            return

        user = services.create_user(
            db,
            org_id=org.id,
            email=email,
            full_name="Organisation Admin",
            password=password,
            role=models.AccountRole.ORG_ADMIN,
        )
        db.commit()

        print("[OK] Created admin user:")
        print(f"  id:      {user.id}")
        print(f"  email:   {user.email}")
        print(f"  role:    {user.role.value}")
        print(f"  org:     {org.login_slug}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
