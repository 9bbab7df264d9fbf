from rest_framework.pagination import PageNumberPagination


def as_payload(record):
    return record.to_dict() if hasattr(record, "to_dict") else record


class StandardResultsSetPagination(PageNumberPagination):
    """Page size is tunable with `?page_size=`, capped at `max_page_size`."""

    page_size_query_param = "page_size"
    max_page_size = 200

    def paginate_records(self, records, request, view=None):
        """Slice a plain list of records and render the page.

        Returns None when pagination is disabled so callers can render the
        whole list themselves.
        """
        page = self.paginate_queryset(records, request, view=view)
        if page is None:
            return None
        return self.get_paginated_response([as_payload(record) for record in page])
