"""Seed the configured storage backend with categories and listings from a YAML file.

Expected layout::

    categories: [Bijoux, Art]
    listings:
      - title: Montre ancienne
        description: ...
        startingPrice: 100
        endTime: "2026-12-31T18:00:00+01:00"
        category: Bijoux
        images: [https://example.com/montre.jpg]
"""

import argparse
import asyncio
from pathlib import Path

import yaml

from auction_server.catalog.service import CatalogService
from auction_server.config import get_server_config
from auction_server.storage import build_storage


async def seed(path: Path) -> None:
    data = yaml.safe_load(path.read_text()) or {}
    storage = build_storage(get_server_config())
    catalog = CatalogService(storage)
    try:
        category_ids = {category.name: category.id for category in await catalog.list_categories()}
        for name in data.get("categories", []):
            if name not in category_ids:
                category_ids[name] = (await catalog.create_category(name)).id
        for item in data.get("listings", []):
            payload = dict(item)
            category = payload.pop("category", None)
            if category:
                payload["categoryId"] = category_ids[category]
            listing = await catalog.create_listing(payload)
            print(f"created listing {listing.id}: {listing.title}")
    finally:
        await storage.close()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("path", type=Path, help="YAML file with categories and listings")
    args = parser.parse_args()
    asyncio.run(seed(args.path))


if __name__ == "__main__":
    main()
