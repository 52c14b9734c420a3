"""
famvault - Source Package

Financial-data encryption and audit-integrity layer for a family
finance application.

DESIGN PRINCIPLES:
1. Per-family keys, never persisted
2. Authenticated encryption only: tampered data fails loudly
3. No silent corrections of amounts
4. Every sensitive operation is auditable
5. Migrations are resumable, never all-or-nothing
"""

__version__ = "1.0.0"
__author__ = "famvault Team"
