"""Seed sample wallpapers and a demo account.

Usage: python scripts/seed_catalog.py [--images DIR] [--demo-user USER_ID] [--demo-credits N]

With --images, each `<n>.jpg` in DIR is stored as the original of the n-th
sample wallpaper and a watermarked preview is rendered next to it.
"""

import argparse
import asyncio
import os
import random
import sys
from pathlib import Path

# Add parent dir to path to find app modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.future import select

from database import Base, async_session_maker, engine
from models.account import Account
from models.user import User
from models.wallpaper import Wallpaper
from services.materializer import IMAGE_CONTENT_TYPE, wallpaper_storage_paths
from services.runtime import build_runtime

SAMPLE_WALLPAPERS = [
    ("Mountain Sunset", "Nature", "realistic", ["mountain", "sunset", "nature", "landscape"], "Beautiful sunset over mountain peaks"),
    ("Abstract Waves", "Abstract", "abstract", ["abstract", "waves", "colorful", "modern"], "Flowing abstract wave patterns"),
    ("Minimal Dark", "Minimal", "minimalist", ["minimal", "dark", "simple", "elegant"], "Clean and minimal dark design"),
    ("Cosmic Galaxy", "Space", "realistic", ["space", "galaxy", "stars", "cosmic"], "Stunning view of distant galaxies"),
    ("Urban Night", "Urban", "realistic", ["city", "urban", "night", "lights"], "City lights at night"),
    ("Geometric Patterns", "Abstract", "digital-art", ["geometric", "pattern", "colorful", "modern"], "Bold geometric patterns"),
    ("Ocean Waves", "Nature", "realistic", ["ocean", "waves", "water", "blue"], "Crystal clear ocean waves"),
]


async def seed_async(images_dir, demo_user, demo_credits):
    print("🌱 Seeding WallpaperVerse catalog...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    runtime = build_runtime()
    try:
        async with async_session_maker() as db:
            created = []
            for index, (title, category, style, tags, description) in enumerate(SAMPLE_WALLPAPERS, start=1):
                existing = await db.execute(select(Wallpaper).where(Wallpaper.title == title))
                if existing.scalar_one_or_none():
                    print(f"⏭️ Skipping existing wallpaper: {title}")
                    continue
                wallpaper = Wallpaper(
                    title=title,
                    description=description,
                    category=category,
                    style=style,
                    tags=tags,
                    price=random.randint(1, 3),
                )
                db.add(wallpaper)
                await db.flush()
                original_path, thumbnail_path = wallpaper_storage_paths(wallpaper.id)
                wallpaper.original_path = original_path
                wallpaper.thumbnail_path = thumbnail_path
                created.append((index, wallpaper))

            if demo_user:
                user = (await db.execute(select(User).where(User.id == demo_user))).scalar_one_or_none()
                if not user:
                    db.add(User(id=demo_user, email=f"{demo_user}@local.invalid"))
                    await db.flush()
                account = (await db.execute(select(Account).where(Account.user_id == demo_user))).scalar_one_or_none()
                if not account:
                    db.add(Account(user_id=demo_user, credits=max(int(demo_credits), 0)))
                    print(f"👤 Provisioned demo account {demo_user} with {demo_credits} credits")
            await db.commit()

        if images_dir:
            for index, wallpaper in created:
                source = Path(images_dir) / f"{index}.jpg"
                if not source.is_file():
                    print(f"⚠️ No image for {wallpaper.title} at {source}")
                    continue
                await runtime.blob_store.put(wallpaper.original_path, source.read_bytes(), content_type=IMAGE_CONTENT_TYPE)
                await runtime.materializer.persist_watermarked_derivative(
                    wallpaper.original_path,
                    wallpaper.thumbnail_path,
                )
                print(f"🖼️ Stored original and preview for {wallpaper.title}")

        print(f"✅ Seeded {len(created)} wallpapers.")
    finally:
        await runtime.aclose()
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Seed sample wallpapers and a demo account.")
    parser.add_argument("--images", default=None, help="Directory holding 1.jpg, 2.jpg, ... originals")
    parser.add_argument("--demo-user", default=None, help="User id to provision with a credit account")
    parser.add_argument("--demo-credits", type=int, default=10)
    args = parser.parse_args()
    asyncio.run(seed_async(args.images, args.demo_user, args.demo_credits))


if __name__ == "__main__":
    main()
