"""
Clause resolution for proposals.

WHAT: Maps the service types on a proposal to the ordered list of clause
codes that must be snapshotted when it is sent.

WHY: Every proposal carries the global terms plus the terms of each service
it sells. Order matters (the snapshot keeps it) and a code must appear only
once even when two services share it.

HOW: Global codes first, then each service's codes in item order,
deduplicated by first occurrence. Unknown service types contribute nothing.
"""

from typing import Iterable, List, Optional

from agency_portal.core.service_catalog import ServiceCatalog, get_service_catalog


class ClauseResolver:
    """
    Resolve clause codes for a list of service types.

    Example:
        resolver = ClauseResolver(get_service_catalog())
        resolver.resolve(["website", "seo"])
        # ['G01', ..., 'G15', 'W01', ..., 'W09', 'S01', ..., 'S07']
    """

    def __init__(self, catalog: Optional[ServiceCatalog] = None):
        self._catalog = catalog or get_service_catalog()

    @property
    def catalog(self) -> ServiceCatalog:
        return self._catalog

    def resolve(self, service_types: Iterable[str]) -> List[str]:
        """
        Ordered, de-duplicated clause codes for the given service types.

        Args:
            service_types: Service types in proposal item order (duplicates allowed)

        Returns:
            Global codes followed by service codes, first occurrence wins
        """
        codes: List[str] = list(self._catalog.global_clause_codes)
        for service_type in service_types:
            template = self._catalog.get(service_type)
            if template is None:
                continue
            codes.extend(template.clause_codes)

        # dict preserves insertion order, so this keeps the first occurrence
        return list(dict.fromkeys(codes))
