"""
Cash Desk - Source Package

Cash and expense tracking for a small organization: projects, articles,
suppliers, cash inflows, expenses with line items, PCA reimbursements,
closings and an append-only activity log.

DESIGN PRINCIPLES:
1. Every mutation leaves an activity trail
2. Fail visibly, never corrupt prior state
3. Access decisions are pure functions of an explicit session
4. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Cash Desk Team"
