import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.fiscalwire.models import ROLE_ADMIN, User, utcnow  # noqa: E402
from app.fiscalwire.modules.cms.models import Author, Category  # noqa: E402
from app.fiscalwire.modules.page_builder.maintenance import seed_page_builder  # noqa: E402
from scripts._db_utils import resolve_database_url, script_session  # noqa: E402

DEFAULT_CATEGORIES = (
    ("Markets", "markets", "bg-blue-600"),
    ("Tech", "tech", "bg-purple-600"),
    ("Crypto", "crypto", "bg-orange-500"),
    ("Economy", "economy", "bg-green-600"),
    ("Opinion", "opinion", "bg-gray-600"),
)

DEFAULT_AUTHORS = (
    ("Sarah Chen", "Senior Market Analyst covering technology and AI sectors."),
    ("Michael Torres", "Cryptocurrency correspondent and blockchain technology expert."),
    ("Jennifer Walsh", "Federal Reserve and monetary policy reporter."),
)


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the admin user, default categories/authors and page-builder data idempotently.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@fiscalwire.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = resolve_database_url(database_url)

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        for name, slug, color in DEFAULT_CATEGORIES:
            if not s.query(Category).filter(Category.slug == slug).one_or_none():
                s.add(Category(name=name, slug=slug, color=color))

        if s.query(Author).count() == 0:
            for name, bio in DEFAULT_AUTHORS:
                s.add(Author(name=name, bio=bio))

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                name="Admin",
                password_hash=generate_password_hash(admin_password),
                is_active=True,
                email_verified=utcnow(),
            )
            s.add(user)
        user.role = ROLE_ADMIN
        s.flush()

        result = seed_page_builder(s)

    print("Initialized database (seed_only).")
    print(f"Page builder: {result['zoneDefinitions']} zone definitions, {result['homepageZones']} homepage zones created")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
