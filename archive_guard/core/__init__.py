"""
Core modules for Archive Guard.

This package contains usage accounting, the catalog cache, archive
reconciliation and gap reporting.
"""
