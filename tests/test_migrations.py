from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ROOT = Path(__file__).resolve().parents[1]

EXPECTED_TABLES = {
    "users",
    "chats",
    "chat_participants",
    "chat_messages",
    "message_reads",
    "message_reactions",
    "pinned_messages",
}


def _config(database_url: str) -> Config:
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("sqlalchemy.url", database_url)
    config.attributes["configure_logger"] = False
    return config


def test_upgrade_and_downgrade_round_trip(tmp_path) -> None:
    database_url = f"sqlite:///{tmp_path / 'migrations.db'}"
    config = _config(database_url)

    command.upgrade(config, "head")
    engine = create_engine(database_url)
    try:
        inspector = inspect(engine)
        assert EXPECTED_TABLES <= set(inspector.get_table_names())
        participant_columns = {column["name"] for column in inspector.get_columns("chat_participants")}
        assert {"chat_id", "user_id", "role", "joined_at"} <= participant_columns
        index_names = {index["name"] for index in inspector.get_indexes("chat_messages")}
        assert "ix_chat_messages_chat_created_at" in index_names

        command.downgrade(config, "base")
        assert EXPECTED_TABLES.isdisjoint(inspect(engine).get_table_names())
    finally:
        engine.dispose()
