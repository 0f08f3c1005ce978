#!/usr/bin/env python3
"""
Migration: Create the circuit_breaker table.

The service also creates it on first connection; run this ahead of a deploy
to fail early on permission or connectivity problems.

Usage:
    CIRCUIT_BREAKER_POSTGRES_URL=postgresql://... python scripts/migrate_circuit_breaker_state.py
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect

from circuitguard.core.circuit_store import DurableCircuitStore
from circuitguard.db import build_engine


def migrate(url: str | None = None) -> list[str]:
    """Create the circuit_breaker table and return its column names."""
    engine = build_engine(url)
    store = DurableCircuitStore(engine)

    print("Creating circuit_breaker table...")
    store.create_schema()

    columns = [c["name"] for c in inspect(engine).get_columns("circuit_breaker")]
    print(f"  Columns: {', '.join(columns)}")
    print("\nMigration complete!")
    return columns


if __name__ == "__main__":
    migrate()
