"""
Database models for botrunner.

Uses Peewee ORM with SQLite. Stores one Deployment row per accepted deploy
request, recording its lifecycle. Runtime state (pid, status, restart count)
is never stored here; the process supervisor owns it.
"""

import os
from datetime import datetime

from peewee import (
    AutoField,
    CharField,
    DatabaseProxy,
    DateTimeField,
    IntegerField,
    Model,
    SqliteDatabase,
    TextField,
    fn,
)

from .config import config

database = DatabaseProxy()


def initialize_db(db_path=None):
    """Initialize database connection and create tables."""
    db_path = str(db_path or config.db_path)
    os.makedirs(os.path.dirname(db_path), exist_ok=True)
    db = SqliteDatabase(
        db_path,
        pragmas={
            "journal_mode": "wal",
            "cache_size": -64 * 1000,
            "foreign_keys": 1,
            "busy_timeout": 5000,
        },
    )
    database.initialize(db)
    database.create_tables([Deployment], safe=True)


class BaseModel(Model):
    """Base model with common configuration."""

    class Meta:
        database = database


class Deployment(BaseModel):
    """A deployed bot and the furthest lifecycle stage it reached."""

    CREATED = "created"
    INSTALLING = "installing"
    RUNNING = "running"
    FAILED = "failed"
    STOPPED = "stopped"

    id = AutoField()
    name = CharField(unique=True, index=True)
    sequence = IntegerField(index=True)
    workspace_path = CharField(null=True)
    state = CharField(default=CREATED)
    failed_stage = CharField(null=True)  # workspace, install, start
    error = TextField(null=True)
    created_at = DateTimeField(default=datetime.now)
    updated_at = DateTimeField(default=datetime.now)

    class Meta:
        table_name = "deployments"

    def save(self, *args, **kwargs):
        self.updated_at = datetime.now()
        return super().save(*args, **kwargs)

    def transition(self, state: str):
        self.state = state
        self.save()

    def fail(self, stage: str, error: str):
        self.state = self.FAILED
        self.failed_stage = stage
        self.error = error
        self.save()

    @classmethod
    def next_sequence(cls) -> int:
        """First counter value not yet used by any recorded deployment."""
        highest = cls.select(fn.MAX(cls.sequence)).scalar()
        return (highest or 0) + 1
