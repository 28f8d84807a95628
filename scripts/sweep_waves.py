"""
Run the wave expiration sweep once, outside the background scheduler.

Usage:
    python scripts/sweep_waves.py              # Uses development DB
    python scripts/sweep_waves.py --env production

Safe to run while the scheduler is active: sessions locked by another
worker are deferred to the next sweep.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from reflection import create_app
from reflection.services.scheduler_service import SchedulerService


def main():
    parser = argparse.ArgumentParser(description="Expire finished waves and complete their sessions")
    parser.add_argument("--env", default="development", help="App environment")
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)
    SchedulerService.stop()

    with app.app_context():
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job("wave_expiration_sweep")

    print(f"  Status: {result['status']}")
    for key, value in (result.get("result") or {}).items():
        print(f"  {key:.<24} {value}")
    if result["status"] != "success":
        print(f"  Error: {result.get('error')}")
        sys.exit(1)


if __name__ == "__main__":
    main()
