"""CLI: storage-admin upload | scan | show | select | delete | force-delete."""
import argparse
import json
import os
import sys
from pathlib import Path

import httpx

from .client import StorageAdminClient


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="storage-admin", description="Upload files and clean up duplicate objects")
    parser.add_argument("--base-url", default="http://localhost:8000", help="API base URL")
    parser.add_argument("--token", default=os.environ.get("STORAGE_ADMIN_TOKEN"), help="Admin access token (or STORAGE_ADMIN_TOKEN)")
    sub = parser.add_subparsers(dest="command", required=True)

    # upload
    p_upload = sub.add_parser("upload", help="Upload files to a bucket")
    p_upload.add_argument("--bucket", required=True, help="Logical bucket (image, blog, about, custom, files)")
    p_upload.add_argument("--prefix", default=None, help="Extra key prefix")
    p_upload.add_argument("files", nargs="+", help="Local file paths")
    p_upload.set_defaults(func=cmd_upload)

    # scan
    p_scan = sub.add_parser("scan", help="Start a duplicate scan")
    p_scan.add_argument("--bucket", action="append", dest="buckets", default=None, help="Bucket to scan (repeatable)")
    p_scan.add_argument("--wait", action="store_true", help="Poll until the scan finishes")
    p_scan.set_defaults(func=cmd_scan)

    # show
    p_show = sub.add_parser("show", help="Show a scan (latest by default)")
    p_show.add_argument("--scan-id", type=int, default=None)
    p_show.set_defaults(func=cmd_show)

    # select
    p_select = sub.add_parser("select", help="List ids of copies with no database reference")
    p_select.add_argument("--scan-id", type=int, required=True)
    p_select.add_argument("--hash", dest="content_hash", default=None, help="Limit to one duplicate group")
    p_select.set_defaults(func=cmd_select)

    # delete
    p_delete = sub.add_parser("delete", help="Delete files from a scan (refused if any is referenced)")
    p_delete.add_argument("--scan-id", type=int, required=True)
    p_delete.add_argument("file_ids", nargs="+", type=int)
    p_delete.set_defaults(func=cmd_delete)

    # force-delete
    p_force = sub.add_parser("force-delete", help="Delete one file even if referenced")
    p_force.add_argument("--scan-id", type=int, required=True)
    p_force.add_argument("--object-key", required=True, help="Must equal the file's object key")
    p_force.add_argument("file_id", type=int)
    p_force.set_defaults(func=cmd_force_delete)

    args = parser.parse_args(argv)
    if not args.token:
        print("Error: --token or STORAGE_ADMIN_TOKEN is required", file=sys.stderr)
        return 2
    client = StorageAdminClient(base_url=args.base_url, token=args.token)
    try:
        return args.func(client, args)
    except httpx.HTTPStatusError as e:
        print(f"Error: {e.response.status_code} {e.response.text}", file=sys.stderr)
        return 1
    except httpx.HTTPError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()


def cmd_upload(client: StorageAdminClient, args: argparse.Namespace) -> int:
    paths = [Path(f) for f in args.files]
    missing = [p for p in paths if not p.exists()]
    if missing:
        print(f"Missing files: {missing}", file=sys.stderr)
        return 1
    rejected = 0
    for path in paths:
        out = client.upload(args.bucket, path, prefix=args.prefix)
        if out.get("rejected"):
            rejected += 1
            for err in out.get("detail", {}).get("errors", []):
                print(f"  {path.name}: {err}", file=sys.stderr)
        else:
            print(f"  {path.name} -> {out['object_key']}", file=sys.stderr)
    return 1 if rejected else 0


def cmd_scan(client: StorageAdminClient, args: argparse.Namespace) -> int:
    out = client.start_scan(args.buckets)
    print(f"Started scan {out['scan_id']} over {', '.join(out['buckets'])}", file=sys.stderr)
    if args.wait:
        out = client.wait_for_scan(out["scan_id"])
        _print_summary(out)
    print(json.dumps(out, indent=2))
    return 0 if out["status"] != "failed" else 1


def cmd_show(client: StorageAdminClient, args: argparse.Namespace) -> int:
    out = client.get_scan(args.scan_id)
    _print_summary(out)
    print(json.dumps(out, indent=2))
    return 0


def cmd_select(client: StorageAdminClient, args: argparse.Namespace) -> int:
    ids = client.select_non_referenced(args.scan_id, args.content_hash)
    print(" ".join(str(i) for i in ids))
    return 0


def cmd_delete(client: StorageAdminClient, args: argparse.Namespace) -> int:
    out = client.delete_files(args.scan_id, args.file_ids)
    print(out["message"], file=sys.stderr)
    for f in out["failures"]:
        print(f"  {f['file_id']} {f.get('object_key') or ''}: {f['reason']}", file=sys.stderr)
    print(json.dumps(out, indent=2))
    return 0 if not out["failures"] else 1


def cmd_force_delete(client: StorageAdminClient, args: argparse.Namespace) -> int:
    out = client.force_delete(args.scan_id, args.file_id, args.object_key)
    print(out["message"], file=sys.stderr)
    print(json.dumps(out, indent=2))
    return 0 if not out["failures"] else 1


def _print_summary(scan: dict) -> None:
    print(
        f"Scan {scan['scan_id']}: {scan['status']}, {scan['duplicate_group_count']} groups, "
        f"{scan['wasted_display']} reclaimable, {len(scan['skipped'])} skipped",
        file=sys.stderr,
    )


if __name__ == "__main__":
    sys.exit(main())
