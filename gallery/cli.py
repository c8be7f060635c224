"""Command-line interface for the semantic image gallery.

Every command opens the gallery first, which also resumes embeddings left
pending by an earlier interrupted run.

Environment variables are read from the process and from a local .env file;
see gallery.config for the full list.
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from tqdm import tqdm

from .config import Settings
from .core.errors import GalleryError
from .core.models import RecordState
from .core.pipeline import ProgressUpdate, RecoveryReport
from .core.service import GalleryService

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".tiff", ".tif"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _human_size(nbytes: int) -> str:
    """Format byte count as human-readable string."""
    for unit in ("B", "KB", "MB", "GB"):
        if abs(nbytes) < 1024:
            return f"{nbytes:.0f} {unit}"
        nbytes /= 1024
    return f"{nbytes:.1f} TB"


def is_image(filepath: Path) -> bool:
    """Check if a file is an image based on extension."""
    return filepath.suffix.lower() in IMAGE_EXTENSIONS


def collect_images(paths: list[str]) -> list[Path]:
    """Expand files and directories into a sorted list of image files."""
    images = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            images.extend(sorted(f for f in path.rglob("*") if f.is_file() and is_image(f)))
        elif path.is_file():
            images.append(path)
        else:
            print(f"Warning: {path} does not exist")
    return images


class ProgressBar:
    """tqdm bar fed by pipeline progress updates, created on first update."""

    def __init__(self, desc: str = "Embedding pending images"):
        self.desc = desc
        self.bar: Optional[tqdm] = None

    def __call__(self, update: ProgressUpdate) -> None:
        if self.bar is None:
            self.bar = tqdm(total=update.total, desc=self.desc, unit="img")
        self.bar.n = update.completed
        self.bar.refresh()

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None


def confirm(prompt: str) -> bool:
    while True:
        response = input(f"{prompt} [y/N] ").strip().lower()
        if response in ("y", "yes"):
            return True
        if response in ("n", "no", ""):
            return False
        print("Please enter 'y' or 'n'")


def print_report(report: RecoveryReport) -> None:
    if report.total:
        print(report)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def cmd_add(service: GalleryService, args) -> int:
    """Store images and compute their embeddings."""
    images = collect_images(args.paths)
    if not images:
        print("No images to add")
        return 1

    added = 0
    pending = 0
    iterator = tqdm(images, desc="Adding") if len(images) > 1 else images
    for filepath in iterator:
        try:
            record_id = await service.save_file(filepath)
        except OSError as e:
            tqdm.write(f"Warning: Could not read {filepath}: {e}")
            continue
        record = await service.get(record_id)
        added += 1
        if record.state == RecordState.PENDING:
            pending += 1
            tqdm.write(f"Added (embedding pending): {filepath.name} (id {record_id})")
        else:
            tqdm.write(f"Added: {filepath.name} (id {record_id})")

    print(f"\nAdded {added} image(s), {pending} pending embedding. Total: {await service.db.count()}")
    return 0


async def cmd_list(service: GalleryService, args) -> int:
    """List all stored images, newest first."""
    records = await service.list_images()
    if not records:
        print("Gallery is empty")
        return 0

    print(f"{'ID':>6}  {'Name':<32} {'Size':>10}  {'State':<8} {'Created':<19}")
    print("-" * 82)
    for r in records:
        created = r.created_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{r.id:>6}  {r.name[:32]:<32} {_human_size(r.size):>10}  {r.state.value:<8} {created:<19}")
    print(f"\nTotal: {len(records)} image(s)")
    return 0


async def cmd_show(service: GalleryService, args) -> int:
    """Write the stored bytes of an image to a file."""
    payload, mimetype = await service.fetch_payload(args.id)
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(payload)
    print(f"Wrote {len(payload)} bytes ({mimetype}) to {output}")
    return 0


async def cmd_delete(service: GalleryService, args) -> int:
    await service.delete_one(args.id)
    print(f"Deleted image {args.id}")
    return 0


async def cmd_clear(service: GalleryService, args) -> int:
    count = await service.db.count()
    if count == 0:
        print("Gallery is empty")
        return 0
    if not args.yes and not confirm(f"Delete all {count} image(s)?"):
        print("Aborted")
        return 1
    await service.delete_all()
    print(f"Deleted {count} image(s)")
    return 0


async def cmd_search(service: GalleryService, args) -> int:
    """Search images by a text description."""
    results = await service.search(args.query, threshold=args.threshold)
    if not results:
        print(f'No images found matching "{args.query}"')
        return 0

    names = {r.id: r.name for r in await service.list_images()}
    for result in results[:args.limit]:
        print(f"  {result.id:>6}  {result.similarity:.4f}  {names.get(result.id, '?')}")
    return 0


async def cmd_usage(service: GalleryService, args) -> int:
    records = await service.list_images()
    pending = sum(1 for r in records if r.state == RecordState.PENDING)
    used = await service.storage_usage()
    print(f"Images:   {len(records)} ({pending} pending)")
    print(f"Storage:  {_human_size(used)} ({used} bytes)")
    return 0


async def cmd_recover(service: GalleryService, args) -> int:
    """Recovery already ran when the gallery opened; report what is left."""
    records = await service.list_images()
    pending = [r for r in records if r.state == RecordState.PENDING]
    if pending:
        print(f"{len(pending)} image(s) still pending: {', '.join(str(r.id) for r in pending)}")
        return 1
    print("All images have embeddings")
    return 0


async def run(command, settings: Settings, args) -> int:
    service = GalleryService.create(settings)
    progress = ProgressBar()
    try:
        report = await service.start(on_progress=progress)
        progress.close()
        print_report(report)
        return await command(service, args)
    finally:
        progress.close()
        await service.close()


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Semantic Gallery - store images and search them by meaning",
        epilog="Environment variables: REPLICATE_API_TOKEN, GALLERY_DB_PATH, GALLERY_MOCK_EMBEDDINGS (see gallery.config)",
    )
    parser.add_argument(
        "--database", "-d",
        default=None,
        help="Path to SQLite database (default: data/gallery.db)",
    )
    parser.add_argument("--config", "-c", default=None, help="YAML settings file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    add_parser = subparsers.add_parser("add", help="Add image files or directories")
    add_parser.add_argument("paths", nargs="+", help="Image files or directories")
    add_parser.set_defaults(func=cmd_add)

    list_parser = subparsers.add_parser("list", help="List stored images")
    list_parser.set_defaults(func=cmd_list)

    show_parser = subparsers.add_parser("show", help="Export an image to a file")
    show_parser.add_argument("id", type=int, help="Image id")
    show_parser.add_argument("--output", "-o", required=True, help="Output file")
    show_parser.set_defaults(func=cmd_show)

    delete_parser = subparsers.add_parser("delete", help="Delete one image")
    delete_parser.add_argument("id", type=int, help="Image id")
    delete_parser.set_defaults(func=cmd_delete)

    clear_parser = subparsers.add_parser("clear", help="Delete all images")
    clear_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompt")
    clear_parser.set_defaults(func=cmd_clear)

    search_parser = subparsers.add_parser("search", help="Search images by text")
    search_parser.add_argument("query", help="Text describing the image")
    search_parser.add_argument("--threshold", "-t", type=float, default=None, help="Minimum similarity")
    search_parser.add_argument("--limit", "-n", type=int, default=10, help="Number of results (default: 10)")
    search_parser.set_defaults(func=cmd_search)

    usage_parser = subparsers.add_parser("usage", help="Show storage usage")
    usage_parser.set_defaults(func=cmd_usage)

    recover_parser = subparsers.add_parser("recover", help="Compute embeddings for pending images")
    recover_parser.set_defaults(func=cmd_recover)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = Settings.load(args.config)
        if args.database:
            settings = replace(settings, db_path=Path(args.database))
        return asyncio.run(run(args.func, settings, args))
    except GalleryError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
