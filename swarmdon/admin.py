"""Run the server, list linked accounts, or run a single poll cycle."""

import asyncio
import sys

import uvicorn

from swarmdon import config
from swarmdon.poller import poll_all_accounts
from swarmdon.state import AppState
from swarmdon.store import Database


def list_accounts(db: Database) -> None:
    users = db.get_users()
    print(f"\nAccounts ({len(users)}):")
    for key, account in users.items():
        if account.is_linked:
            mark = account.watermark or "-"
            print(f"  {key}  swarm={account.swarm_id}  watermark={mark}")
        else:
            print(f"  {key}  (Swarm not linked)")
    print()


async def poll_once() -> int:
    state = AppState.from_config()
    try:
        handled = await poll_all_accounts(state)
    finally:
        await state.aclose()
    print(f"Handled {handled} checkin(s)")
    return handled


def serve() -> None:
    uvicorn.run("swarmdon.main:app", host=config.LISTEN_HOST, port=config.LISTEN_PORT)


def main(argv: list[str]) -> int:
    if len(argv) < 2:
        print("Usage:")
        print("  python -m swarmdon.admin serve")
        print("  python -m swarmdon.admin accounts")
        print("  python -m swarmdon.admin poll")
        return 1

    cmd = argv[1]
    if cmd == "serve":
        serve()
    elif cmd == "accounts":
        list_accounts(Database.open(config.DATABASE_PATH))
    elif cmd == "poll":
        asyncio.run(poll_once())
    else:
        print(f"Unknown command: {cmd}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
