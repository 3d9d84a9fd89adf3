"""Alembic migrations produce the same unique indexes the recorder relies on."""
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ROOT = Path(__file__).resolve().parent.parent


def test_upgrade_and_downgrade(tmp_path):
    url = f"sqlite:///{tmp_path / 'migrated.db'}"
    cfg = Config()
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", url)

    command.upgrade(cfg, "head")
    engine = create_engine(url)
    inspector = inspect(engine)
    assert {"access_credentials", "purchase_records", "audit_logs", "security_logs", "error_logs"} <= set(
        inspector.get_table_names()
    )
    unique = {ix["name"] for ix in inspector.get_indexes("purchase_records") if ix["unique"]}
    assert "ix_purchase_records_payment_reference" in unique
    unique = {ix["name"] for ix in inspector.get_indexes("access_credentials") if ix["unique"]}
    assert "ix_access_credentials_email" in unique

    command.downgrade(cfg, "base")
    assert "purchase_records" not in inspect(engine).get_table_names()
    engine.dispose()
