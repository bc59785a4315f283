"""
Command-line front-end: upload a local file, list the bucket, download or
share an object, or keep a refreshed listing on screen.
"""
import argparse
import logging
import mimetypes
import sys
import time
from pathlib import Path

from .config import LOG_LEVEL, ConfigurationError, StorageConfig
from .file_store import FileStore, ListingPoller
from .listing import format_file_size, size_limit_message
from .storage_client import StorageClient, StorageError, unique_object_key

logger = logging.getLogger(__name__)


def print_listing(files, out=None):
    out = out or sys.stdout
    if not files:
        print("No files in storage", file=out)
        return
    for record in files:
        stamp = record.last_modified.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        print(f"{record.name}\t{record.size_label}\t{stamp}", file=out)
    total = sum(record.size for record in files)
    print(f"Total Size: {format_file_size(total)}", file=out)


def progress_printer(out=None):
    out = out or sys.stderr
    last = {"percent": -1}

    def report(sent, total):
        percent = 100 if total == 0 else sent * 100 // total
        if percent != last["percent"]:
            last["percent"] = percent
            print(f"\rUploading... {percent}%", end="", file=out, flush=True)
            if percent == 100:
                print(file=out)

    return report


def cmd_upload(client, args):
    path = Path(args.path)
    data = path.read_bytes()
    max_bytes = client.config.max_upload_bytes
    if len(data) > max_bytes:
        raise ValueError(size_limit_message(max_bytes))
    key = unique_object_key(path.name)
    content_type = args.content_type or mimetypes.guess_type(path.name)[0]
    client.upload(key, data, content_type=content_type, progress=progress_printer())
    print(f"Filename: {key}")
    print(f"URL: {client.public_object_url(key)}")


def cmd_list(client, args):
    print_listing(client.list_objects())


def cmd_download(client, args):
    target = Path(args.output or args.key.rsplit("/", 1)[-1])
    with open(target, "wb") as handle:
        for chunk in client.iter_download(args.key):
            handle.write(chunk)
    print(f"Saved {args.key} to {target}")


def cmd_url(client, args):
    print(client.presigned_url(args.key, method=args.method, expires=args.expires))


def cmd_watch(client, args):
    store = FileStore()
    interval = args.interval or client.config.refresh_interval
    poller = ListingPoller(store, client.list_objects, interval)
    try:
        while True:
            if poller.refresh_once():
                print(f"--- {time.strftime('%H:%M:%S')}")
                print_listing(store.files)
            else:
                print(f"Error: {store.error}", file=sys.stderr)
            time.sleep(interval)
    except KeyboardInterrupt:
        pass


def build_parser():
    parser = argparse.ArgumentParser(prog="bucketdrop", description="Upload to and browse an S3-compatible bucket.")
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Upload a local file")
    upload.add_argument("path")
    upload.add_argument("--content-type", default=None)
    upload.set_defaults(func=cmd_upload)

    listing = sub.add_parser("list", help="List bucket contents, newest first")
    listing.set_defaults(func=cmd_list)

    download = sub.add_parser("download", help="Download an object")
    download.add_argument("key")
    download.add_argument("-o", "--output", default=None)
    download.set_defaults(func=cmd_download)

    url = sub.add_parser("url", help="Print a presigned URL for an object")
    url.add_argument("key")
    url.add_argument("--method", default="GET", choices=["GET", "PUT"])
    url.add_argument("--expires", type=int, default=None)
    url.set_defaults(func=cmd_url)

    watch = sub.add_parser("watch", help="Re-print the listing on every refresh")
    watch.add_argument("--interval", type=float, default=None)
    watch.set_defaults(func=cmd_watch)
    return parser


def main(argv=None):
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(message)s")
    args = build_parser().parse_args(argv)
    try:
        config = StorageConfig.from_env()
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    with StorageClient(config) as client:
        try:
            args.func(client, args)
        except (StorageError, OSError, ValueError) as exc:
            logger.debug("Command %s failed", args.command, exc_info=True)
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
