"""Main entry point for Engagement Hub.

Collects Slack activity, HiBob HR data and webinar attendance exports into
one store and serves engagement, activation and HR metrics from it.

Usage:
    python main.py [command] [options]

Examples:
    python main.py init                  # Create the database schema
    python main.py sync-all              # Sync every member Slack channel
    python main.py sync-hr               # Sync HiBob data
    python main.py overview --days 30    # Workspace engagement overview
    python main.py webinar-upload export.csv --name "Q3 Kickoff" --host "Dana"

For full command list:
    python main.py --help
"""
import sys
from cli.main import cli

if __name__ == "__main__":
    sys.exit(cli())
