"""Send test push payloads to the local server.

Usage: python send_push.py <push-secret> [swarm-user-id]
"""

import asyncio
import json
import sys

import httpx

BASE_URL = "http://localhost:8000"


def sample_checkin(checkin_id: str, user_id: str, **extra) -> dict:
    checkin = {
        "id": checkin_id,
        "createdAt": 1700966000,
        "type": "checkin",
        "visibility": "closeFriends",
        "shout": "Testing swarmdon",
        "user": {"id": user_id, "firstName": "Test", "lastName": "User", "handle": ""},
        "venue": {
            "id": "venue1",
            "name": "A Place",
            "location": {"city": "New York", "state": "NY", "country": "United States"},
        },
    }
    checkin.update(extra)
    return checkin


async def main():
    secret = sys.argv[1] if len(sys.argv) > 1 else ""
    user_id = sys.argv[2] if len(sys.argv) > 2 else "123"
    if not secret:
        print("Usage: python send_push.py <push-secret> [swarm-user-id]")
        sys.exit(1)

    url = f"{BASE_URL}/swarm/push"

    async with httpx.AsyncClient() as client:
        print("--- Health Check ---")
        r = await client.get(f"{BASE_URL}/health")
        print(f"  {r.status_code}: {r.json()}\n")

        print("--- Wrong secret (ignored, still 200) ---")
        checkin = json.dumps(sample_checkin("test1", user_id))
        r = await client.post(url, data={"checkin": checkin, "secret": "wrong-secret"})
        print(f"  {r.status_code}\n")

        print("--- Private checkin (ignored) ---")
        checkin = json.dumps(sample_checkin("test2", user_id, private=True))
        r = await client.post(url, data={"checkin": checkin, "secret": secret})
        print(f"  {r.status_code}\n")

        print("--- Public checkin ---")
        checkin = json.dumps(sample_checkin("test3", user_id))
        r = await client.post(url, data={"checkin": checkin, "secret": secret})
        print(f"  {r.status_code}\n")

        print("Done! Check the server logs for the relay outcome.")


if __name__ == "__main__":
    asyncio.run(main())
