#!/usr/bin/env python3
"""
Index Rebuild Utility
Re-embeds every item from the canonical SQLite state and replaces all stored
vectors. Run after changing EMBED_MODEL_NAME, or when drift detection reports
missing or mismatched vectors.
"""

import argparse
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent))

from stuff_search.core.config import DB_PATH, get_embedding_gateway, get_vector_index
from stuff_search.core.drift_rules import detect_drift, rebuild_index
from stuff_search.core.errors import StuffSearchError
from stuff_search.core.inventory import InventoryStore


def main():
    """Rebuild vectors for every item."""
    parser = argparse.ArgumentParser(description='Rebuild item vectors from the inventory database')
    parser.add_argument('--db', default=DB_PATH, help=f'SQLite database path (default: {DB_PATH})')
    parser.add_argument('--check', action='store_true', help='Only report drift, do not rebuild')
    args = parser.parse_args()

    try:
        gateway = get_embedding_gateway()
        store = InventoryStore(args.db, index=get_vector_index(gateway.dimension))
    except StuffSearchError as e:
        print(f"ERROR: Could not start embedding model: {e}")
        return 1

    loaded = store.load_index()
    print(f"Loaded {loaded} stored vectors")

    findings = detect_drift(store)
    print(f"Found {len(findings)} drift finding(s)")
    for finding in findings:
        print(f"  [{finding.severity}] {finding.type} item={finding.record_id}")

    if args.check:
        return 0 if not findings else 2

    print("Starting vector index rebuild...")
    summary = rebuild_index(store, gateway)
    print(f"✓ Re-embedded {summary['embedded']} items, removed {summary['removed']} orphaned vectors")

    if summary['failed']:
        print(f"WARNING: {summary['failed']} item(s) could not be embedded; run again to retry")
        return 1

    remaining = detect_drift(store)
    if remaining:
        print(f"WARNING: {len(remaining)} drift finding(s) remain after rebuild")
        return 1

    print("Index rebuild complete!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
