"""Create the documents table for the SQL document store.

Usage:
    cd backend
    python -m scripts.create_document_store

Production deployments should run the Alembic migration instead.
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.database import create_engine
from app.core.document_store import SqlDocumentStore


async def create_document_store() -> int:
    """Create the documents table if it doesn't exist."""
    print("=" * 50)
    print("Creating Document Store Schema")
    print("=" * 50)
    print()

    if not settings.DATABASE_URL:
        print("✗ Error: DATABASE_URL is not set")
        print("  Please set DATABASE_URL in your .env file")
        return 1

    engine = create_engine()
    try:
        store = SqlDocumentStore.from_engine(engine)
        await store.create_schema(engine)
    except SQLAlchemyError as e:
        print(f"✗ Error: {e}")
        return 1
    finally:
        await engine.dispose()

    print("✓ Documents table ready")
    print()
    print("Next steps:")
    print("  Set DOCUMENT_STORE_BACKEND=sql and start the server")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(create_document_store()))
