#!/usr/bin/env python3
"""
Import photos from the command line.

Takes a single photo or a zip archive of photos, captions and embeds each
one, and files the resulting items into a container. Optionally runs a
search afterwards to check the result.
"""

import argparse
import sys
from pathlib import Path

import dotenv
dotenv.load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent))

from stuff_search.core.errors import StuffSearchError
from stuff_search.core.ingestion import expand_upload
from stuff_search.core.service import InventoryService


def _format_container(service, container_id):
    """Container path, with the location note of the innermost container if it has one."""
    path = " -> ".join(service.container_path(container_id))
    container = service.get_container(container_id)
    if container.location:
        path += f" ({container.location})"
    return path


def main():
    parser = argparse.ArgumentParser(description='Ingest photos of items into a container')
    parser.add_argument('path', help='Photo or zip file of photos')
    parser.add_argument('--container', type=int, help='Target container id')
    parser.add_argument('--new-container', help='Create a root container with this name and import into it')
    parser.add_argument('--query', help='Search query to run after importing')
    parser.add_argument('-k', type=int, default=5, help='Number of search results (default: 5)')
    args = parser.parse_args()

    if (args.container is None) == (args.new_container is None):
        parser.error("give exactly one of --container or --new-container")

    upload = Path(args.path)
    if not upload.is_file():
        print(f"❌ Error: {upload} not found")
        return 1

    service = InventoryService.from_config()
    try:
        container_id = args.container
        if args.new_container:
            container_id = service.create_container(args.new_container)
            print(f"Created container {container_id}: {args.new_container}")

        images = expand_upload(upload.name, upload.read_bytes())
        print(f"Importing {len(images)} photo(s) into {_format_container(service, container_id)}")

        report = service.ingest_batch(container_id, images)
        for outcome in report.outcomes:
            if outcome.succeeded:
                item = service.get_item(outcome.item_id)
                print(f"  ✓ {outcome.source}: {item.name}")
            else:
                print(f"  ✗ {outcome.source}: {outcome.reason}")
        print(f"{report.succeeded} imported, {report.failed} failed")

        if args.query:
            print(f"\nSearch: {args.query}")
            for result in service.search(args.query, args.k):
                print(f"name: {result.item.name}")
                print(f"description: {result.item.description}")
                print(f"score: {result.score:.3f}")
                print(f"containers: {' -> '.join(result.container_path)}\n")
    except StuffSearchError as e:
        print(f"❌ Error: {e}")
        return 1
    finally:
        service.close()

    return 0 if report.failed == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
