"""
Pagination classes for the billing API.

- LedgerCursorPagination: ledger entries, newest first
- ReconciliationRunPagination: reconciliation runs, newest first

Cursors encode (created_at, id), so pages stay stable while new entries are
appended.
"""

from rest_framework.pagination import CursorPagination


class LedgerCursorPagination(CursorPagination):
    """
    Cursor pagination for ledger entries.

    Default: 50 entries per page
    Maximum: 200 entries per page
    """

    page_size = 50
    max_page_size = 200
    page_size_query_param = "page_size"
    ordering = ("-created_at", "-id")
    cursor_query_param = "cursor"


class ReconciliationRunPagination(CursorPagination):
    page_size = 20
    max_page_size = 100
    page_size_query_param = "page_size"
    ordering = ("-started_at", "-id")
    cursor_query_param = "cursor"
