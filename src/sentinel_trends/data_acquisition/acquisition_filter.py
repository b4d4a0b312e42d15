"""
Acquisition filtering

Selects the acquisitions of a product that intersect a region, fall in a
half-open date range [start, end) and satisfy scalar metadata predicates
such as ``CLOUDY_PIXEL_PERCENTAGE < 50``.
"""

import logging
import operator
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence

from ..core import Acquisition, Collection, Region, to_utc
from ..exceptions import EmptyCollectionError
from .providers import ImageryProvider

logger = logging.getLogger(__name__)


def _contains(container: Any, item: Any) -> bool:
    try:
        return item in container
    except TypeError:
        return False


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    'lt': operator.lt,
    'lte': operator.le,
    'gt': operator.gt,
    'gte': operator.ge,
    'eq': operator.eq,
    'neq': operator.ne,
    'contains': _contains,
}


class PropertyFilter(NamedTuple):
    """Predicate on one metadata property"""

    name: str
    op: str
    value: Any

    def matches(self, properties: Mapping[str, Any]) -> bool:
        if self.op not in OPERATORS:
            raise ValueError(f"Unknown filter operator '{self.op}', expected one of {list(OPERATORS)}")
        if properties.get(self.name) is None:
            return False
        try:
            return bool(OPERATORS[self.op](properties[self.name], self.value))
        except TypeError:
            return False

    def describe(self) -> str:
        return f"{self.name} {self.op} {self.value}"


def cloud_cover_filter(max_clouds: float, property_name: str = 'CLOUDY_PIXEL_PERCENTAGE') -> PropertyFilter:
    """Scene-level cloud coverage strictly below max_clouds"""
    return PropertyFilter(property_name, 'lt', max_clouds)


def orbit_filters(
    orbit_pass: Optional[str] = None,
    max_relative_orbit: Optional[int] = None,
    polarisations: Sequence[str] = ()
) -> List[PropertyFilter]:
    """Sentinel-1 acquisition geometry predicates"""
    filters = []
    if orbit_pass:
        filters.append(PropertyFilter('orbitProperties_pass', 'eq', orbit_pass))
    if max_relative_orbit is not None:
        filters.append(PropertyFilter('relativeOrbitNumber_start', 'lt', max_relative_orbit))
    for pol in polarisations:
        filters.append(PropertyFilter('transmitterReceiverPolarisation', 'contains', pol))
    return filters


class AcquisitionFilter:
    """Builds filtered Collections from an imagery provider"""

    def __init__(self, provider: ImageryProvider):
        self.provider = provider

    @staticmethod
    def _matches(
        acquisition: Acquisition,
        region: Optional[Region],
        start: datetime,
        end: datetime,
        predicates: Sequence[PropertyFilter]
    ) -> bool:
        if not (start <= acquisition.timestamp < end):
            return False
        footprint = acquisition.footprint()
        if region is not None and footprint is not None and not region.intersects(footprint):
            return False
        return all(p.matches(acquisition.properties) for p in predicates)

    def apply(
        self,
        product_id: str,
        region: Optional[Region],
        start: Any,
        end: Any,
        predicates: Iterable[PropertyFilter] = ()
    ) -> Collection:
        """
        Query the provider and keep acquisitions satisfying every predicate

        Args:
            product_id: Provider collection id
            region: Spatial bound
            start: Inclusive start date
            end: Exclusive end date
            predicates: Metadata predicates

        Returns:
            Collection of matching acquisitions

        Raises:
            EmptyCollectionError: nothing matched
        """
        start, end = to_utc(start), to_utc(end)
        predicates = list(predicates)

        description = f"{start.date()} <= t < {end.date()}"
        if predicates:
            description += ", " + ", ".join(p.describe() for p in predicates)

        candidates = self.provider.query_collection(product_id, region, start, end, predicates)
        selected = [a for a in candidates if self._matches(a, region, start, end, predicates)]

        logger.info(f"{product_id} collection size: {len(selected)} of {len(candidates)} ({description})")

        if not selected:
            raise EmptyCollectionError(product_id, description)

        return Collection(product_id=product_id, acquisitions=tuple(selected), description=description)
