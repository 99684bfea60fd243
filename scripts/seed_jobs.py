"""
Seed script — submits a handful of sample shell jobs for demo purposes.

Usage:
    python -m scripts.seed_jobs [base_url]

This creates:
- 3 quick jobs with different priorities (watch the high one run first)
- 1 slow job
- 1 job scheduled 30 seconds in the future
- 1 guaranteed-failure job (demos retry backoff + the dead-letter queue)

Start the API first (`queuectl dashboard`), then a worker or two
(`queuectl worker start --count 2`).
"""

import sys
from datetime import datetime, timedelta, timezone

import httpx

BASE_URL = "http://localhost:8000"


def seed(base_url: str = BASE_URL):
    client = httpx.Client(base_url=base_url, timeout=10.0)
    later = datetime.now(timezone.utc) + timedelta(seconds=30)

    jobs = [
        {"command": "echo 'low priority'", "priority": 0},
        {"command": "echo 'normal priority'", "priority": 5},
        {"command": "echo 'urgent' && date", "priority": 10},
        {"command": "sleep 3 && echo 'slow job done'", "priority": 1},
        {"command": "echo 'scheduled job'", "run_at": later.isoformat()},
        {"command": "echo 'about to fail' >&2; exit 3", "max_retries": 2},
    ]

    print(f"Submitting {len(jobs)} jobs to {base_url}...\n")

    for job in jobs:
        resp = client.post("/jobs/", json=job)
        resp.raise_for_status()
        data = resp.json()
        print(f"  [{data['state']}] p={data['priority']} {data['command']} (id: {data['id'][:8]}...)")

    print("\nDone! Start a worker to process them:  queuectl worker start")
    print(f"Check status:  curl {base_url}/jobs/status")
    print(f"Dead letters:  curl {base_url}/dlq/")


if __name__ == "__main__":
    seed(sys.argv[1] if len(sys.argv) > 1 else BASE_URL)
