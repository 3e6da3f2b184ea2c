#!/usr/bin/env python3
"""
Database Management Script
Schema migrations and compliance seed data for any environment.

Usage:
    python manage_db.py upgrade
    python manage_db.py seed compliance/rulesets
"""

import os
import sys
from contextlib import contextmanager

from flask_migrate import init, migrate, upgrade, current, history

from app import create_app
from config import Config
from models import db
from services.compliance.loader import RuleSetLoader


@contextmanager
def app_context():
    """Application context on the environment's configuration."""
    app = create_app(os.getenv('APP_CONFIG', 'config.Config'))
    with app.app_context():
        print(f"Database: {app.config['SQLALCHEMY_DATABASE_URI']}")
        yield app


def init_database(_=None):
    """Create all tables directly (development databases)."""
    with app_context() as app:
        db_path = app.config['SQLALCHEMY_DATABASE_URI']
        if db_path.startswith('sqlite:///'):
            db_dir = os.path.dirname(db_path.replace('sqlite:///', ''))
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)
        db.create_all()
        print("Tables created.")


def setup_migrations(_=None):
    with app_context():
        init()
        print("Migration repository initialized.")


def create_migration(message=None):
    with app_context():
        migrate(message=message or "auto migration")
        print(f"Migration created: {message or 'auto migration'}")


def upgrade_database(_=None):
    with app_context():
        upgrade()
        print("Database upgraded.")


def show_migration_status(_=None):
    with app_context():
        print("\nCurrent revision:")
        current()
        print("\nMigration history:")
        history()


def seed_rule_sets(seed_dir=None):
    """Insert global compliance rule sets from the YAML seed files."""
    with app_context() as app:
        seed_dir = seed_dir or app.config['COMPLIANCE_SEED_DIR']
        print(f"Seeding rule sets from: {seed_dir}")
        created = RuleSetLoader.seed_database(seed_dir)
        print(f"Created {created} global rule set(s).")


def check_seeds(seed_dir=None):
    """Validate the seed files without touching the database."""
    seeds = RuleSetLoader.load_all(seed_dir or Config.COMPLIANCE_SEED_DIR)
    for seed in seeds:
        print(f"  {seed.jurisdiction} v{seed.version} ({seed.source})")
    print(f"{len(seeds)} seed file(s) valid.")


COMMANDS = {
    'init': (init_database, "Create all tables"),
    'setup': (setup_migrations, "Set up migration repository"),
    'migrate': (create_migration, "Create new migration [message]"),
    'upgrade': (upgrade_database, "Upgrade database to latest migration"),
    'status': (show_migration_status, "Show migration status"),
    'seed': (seed_rule_sets, "Load global compliance rule sets [dir]"),
    'check-seeds': (check_seeds, "Validate compliance seed files [dir]"),
}


def main():
    if len(sys.argv) < 2 or sys.argv[1] not in COMMANDS:
        if len(sys.argv) >= 2:
            print(f"Unknown command: {sys.argv[1]}")
        print("Usage: python manage_db.py <command> [argument]")
        print("Commands:")
        for name, (_, help_text) in COMMANDS.items():
            print(f"  {name:<12} - {help_text}")
        return

    command, _ = COMMANDS[sys.argv[1]]
    argument = sys.argv[2] if len(sys.argv) > 2 else None

    try:
        command(argument)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
