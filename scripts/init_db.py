#!/usr/bin/env python
"""Initialize database tables for the event source and the aggregate store."""
import asyncio
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from rich.console import Console

from records_engine.db.connection import create_engine
from records_engine.db.models import Base
from records_engine.settings import configure_logging, get_settings

console = Console()


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    prefix = "sqlite+aiosqlite:///"
    if not database_url.startswith(prefix):
        return
    path = database_url[len(prefix) :]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


async def init_db() -> None:
    settings = get_settings()
    for warning in settings.optional_config_warnings():
        console.print(f"[yellow]⚠ {warning}[/yellow]")

    _ensure_sqlite_directory(settings.resolved_database_url)
    engine = create_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    console.print(
        f"[green]✓ Database tables created successfully ({settings.database_type})[/green]"
    )


if __name__ == "__main__":
    configure_logging()
    asyncio.run(init_db())
