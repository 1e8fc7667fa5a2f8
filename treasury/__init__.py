"""
Aurora Treasury - Source Package

Approval and reconciliation engine for a small club treasury:
monthly dues collection, expense reimbursements and credential resets.

DESIGN PRINCIPLES:
1. Member requests → Treasurer reviews → System records
2. Every state change is one atomic write plus one history entry
3. No silent overwrites (optimistic versioning on every request)
4. Reference codes link bank transfers to requests, never authorize anything
5. Storage and external services are swappable
"""

__version__ = "1.0.0"
__author__ = "Aurora Treasury Team"
