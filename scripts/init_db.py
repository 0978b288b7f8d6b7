import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.skillloop.constants import DEFAULT_CATEGORY_NAME, PERMISSIONS, ROLE_PERMISSIONS, SYSTEM_ROLE_NAMES, SYSTEM_ROLES
from app.skillloop.models import Permission, Role, User
from app.skillloop.modules.skills.models import SkillCategory
from app.skillloop.modules.system_config.service import seed_defaults


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_catalog(s: Session) -> dict[str, Role]:
    """
    Permissions, system roles, default SystemConfig rows and the fallback skill category.
    Idempotent; grants missing permissions to existing roles but never revokes.
    """
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key in SYSTEM_ROLES:
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=SYSTEM_ROLE_NAMES[key])
            s.add(role)
        for perm_key in ROLE_PERMISSIONS[key]:
            if perms[perm_key] not in role.permissions:
                role.permissions.append(perms[perm_key])
        roles[key] = role
    s.flush()

    seed_defaults(s)

    if not s.query(SkillCategory).filter(SkillCategory.name == DEFAULT_CATEGORY_NAME).one_or_none():
        s.add(SkillCategory(name=DEFAULT_CATEGORY_NAME, description="Skills without a more specific category"))
    s.flush()
    return roles


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the catalog and the first admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@skillloop.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///skillloop.db").strip()

    # Direct engine/session so release can run without importing app.wsgi.
    with _session_scope(db_url) as s:
        roles = seed_catalog(s)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Administrator",
                employee_no="ADMIN-001",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
            )
            s.add(user)
        if roles["admin"] not in user.roles:
            user.roles.append(roles["admin"])

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
