"""
arcrepo.iteration - Lazy Result Sequences
===========================================

    - paging:         PagingIterator over paged list endpoints
    - import_status:  ImportStatusIterator over a streamed archive import
"""

from arcrepo.iteration.import_status import ImportStatusIterator
from arcrepo.iteration.paging import Page, PageSizeSchedule, PagingIterator

__all__ = ["PagingIterator", "Page", "PageSizeSchedule", "ImportStatusIterator"]
