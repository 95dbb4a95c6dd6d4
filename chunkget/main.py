# chunkget/main.py
"""
ChunkGet - resumable chunked downloader
Command line entry point and output file handling.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from chunkget.engine import download_file
from chunkget.errors import ChunkGetError, OutputExistsError
from chunkget.models import DownloadConfig
from chunkget.utils import format_bytes, get_default_filename, is_valid_url

logger = logging.getLogger(__name__)


class OutputFile:
    """Sink that writes the assembled chunks to a file that must not exist yet."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.bytes_written = 0

    def __call__(self, chunks: Iterable[bytes]):
        try:
            f = open(self.path, 'xb')
        except FileExistsError as e:
            raise OutputExistsError(
                f"{self.path.name} was created after we checked but before we finished downloading!"
            ) from e
        with f:
            for chunk in chunks:
                f.write(chunk)
                self.bytes_written += len(chunk)


def reserve_output(url: str, output_dir: Path) -> Path:
    """Work out the output path and refuse to run if it is taken."""
    if not output_dir.is_dir():
        raise ChunkGetError(f"{output_dir} does not exist!")
    path = output_dir / get_default_filename(url)
    if path.exists():
        raise OutputExistsError(f"File {path.name} already exists in directory {output_dir}! Aborting.")
    return path


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunkget",
        description="Download a file in fixed-size chunks, resuming across restarts.")
    parser.add_argument("url", help="URL of the file to download")
    parser.add_argument("-o", "--output-dir", type=Path, default=Path(os.getcwd()),
                        help="Output directory (default: current directory)")
    parser.add_argument("--concurrency", type=positive_int, default=8,
                        help="Number of requests to run simultaneously")
    parser.add_argument("--chunk-size", type=positive_int, default=16384,
                        help="Size of each requested byte range")
    parser.add_argument("--no-cache", action="store_true",
                        help="Do not cache chunks on disk in between runs")
    parser.add_argument("--cache-dir", type=Path, default=None,
                        help="Where cached chunks are kept (default: system temp dir)")
    parser.add_argument("--keep-cache", action="store_true",
                        help="Keep cached chunks after a successful download")
    parser.add_argument("--purge-on-mismatch", action="store_true",
                        help="Delete cached chunks when the file changes mid-download")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress details")
    return parser


def config_from_args(args: argparse.Namespace) -> DownloadConfig:
    return DownloadConfig(
        concurrency=args.concurrency,
        chunk_size=args.chunk_size,
        resume=not args.no_cache,
        cache_dir=args.cache_dir,
        keep_cache=args.keep_cache,
        purge_on_mismatch=args.purge_on_mismatch,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not is_valid_url(args.url):
        print(f"Could not use {args.url}: only http(s) URLs are supported.", file=sys.stderr)
        return 1

    try:
        output_path = reserve_output(args.url, args.output_dir)
        config = config_from_args(args)
        sink = OutputFile(output_path)
        downloaded = 0

        def on_progress(chunk_index: int, size: int):
            nonlocal downloaded
            downloaded += size
            print(f"\rDownloaded chunk {chunk_index} ({format_bytes(downloaded)})", end="", flush=True)

        def on_status(message: str):
            print(f"\n{message}")

        result = asyncio.run(download_file(args.url, sink, config,
                                           progress_callback=on_progress,
                                           status_callback=on_status))
    except ChunkGetError as e:
        print(f"\n{e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130

    if not result.ok:
        return 1
    print(f"Saved {output_path} ({format_bytes(sink.bytes_written)})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
