import argparse
import asyncio
import logging
import os
import sys

import uvicorn


def _import_legacy(path: str, user_id: str, workspace: str) -> int:
    from family_manager.core.identity import StaticIdentity
    from family_manager.core.legacy_import import import_families, load_export
    from family_manager.core.storage import JsonRecordStore, OwnerScopedStore

    families = OwnerScopedStore(JsonRecordStore(workspace, "families"), user_id)
    members = JsonRecordStore(workspace, "members")
    summary = asyncio.run(import_families(load_export(path), families, members, StaticIdentity(user_id)))
    if summary.error:
        logging.error("legacy import failed: %s", summary.error)
        return 1
    print(f"Imported {summary.families} families and {summary.members} members into {os.path.abspath(workspace)}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Family Manager API Runner")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host interface to bind")
    parser.add_argument("--port", type=int, default=8333, help="Port to run the backend on")
    parser.add_argument("--dir", type=str, default="./workspace", help="Workspace directory for the local record store")
    parser.add_argument("--log-level", type=str, default=os.getenv("FAMILY_MANAGER_LOG_LEVEL", "INFO"))
    parser.add_argument("--import-legacy", type=str, metavar="FILE", help="Import a legacy JSON export and exit")
    parser.add_argument("--user-id", type=str, help="Owner id used to encrypt imported credentials")

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Set environment var for the app factory to pick up
    os.environ["FAMILY_MANAGER_WORKSPACE"] = args.dir

    if args.import_legacy:
        if not args.user_id:
            parser.error("--import-legacy requires --user-id")
        sys.exit(_import_legacy(args.import_legacy, args.user_id, args.dir))

    from family_manager.main import app

    print(f"Starting Family Manager on http://{args.host}:{args.port}")
    print(f"Workspace: {os.path.abspath(args.dir)}")

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        reload=False,
        log_level=args.log_level.lower(),
    )
