"""Initialize the database tables."""

from shop_access.core.database import Database
from shop_access.core.dependencies import get_settings


def main() -> None:
    settings = get_settings()
    database = Database(settings.database_url, settings.database_timeout_seconds)
    print("Creating database tables...")
    database.create_all()
    print("Tables created successfully!")
    database.dispose()


if __name__ == "__main__":
    main()
