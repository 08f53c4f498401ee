"""
Viotraix CLI Module

Command-line interface for Viotraix using Typer.

Available commands:
- init-db: Create the database tables
- reminders: Run the renewal reminder sweep once
- export-pdf: Write an audit's PDF report to disk
- issue-token: Sign a development access token

Example usage:
    viotraix reminders
    viotraix export-pdf 7f7c... -o report.pdf
"""

__version__ = "0.1.0"
