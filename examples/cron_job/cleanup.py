# examples/cron_job/cleanup.py - Script reported as one execution
"""
Run with:
    apm-agent run --enable --service-name cron examples/cron_job/cleanup.py --days 7
"""

import argparse
import warnings


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--days', type=int, default=30)
    args = parser.parse_args()

    if args.days < 14:
        warnings.warn(f"retention of {args.days} days is below the recommended 14")

    print(f"Removing records older than {args.days} days")


if __name__ == '__main__':
    main()
