"""
Viotraix Core Module

Business logic for Viotraix:
- Upload intake and usage entitlement
- Vision analysis and the audit state machine
- Lemon Squeezy billing and webhook handling
- PDF report rendering and renewal reminders

Example usage:
    from quota.usage import resolve_usage
    from core.analysis import run_analysis
    from core.render_pdf import generate_audit_pdf
"""

__version__ = "0.1.0"
