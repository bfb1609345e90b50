"""
Application store: id -> plaintext matching criteria.
"""
from dataclasses import replace
from typing import Dict, Union

from cloak.shared.errors import InvalidArgument, NotCreator, NotFound
from cloak.shared.protocol import ApplicationCriteria, Bound, FheType
from cloak.shared.utils import check_width

BoundLike = Union[int, Bound]


def _bound(value: BoundLike, fhe_type: FheType, name: str) -> Bound:
    if isinstance(value, bool):
        raise InvalidArgument(f"{name} must be an integer, got bool")
    try:
        bound = Bound.coerce(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{name} must be an integer, got {value!r}")
    if not bound.is_any:
        check_width(bound.value, fhe_type, name)
    return bound


class ApplicationStore:
    """
    Issues monotonically increasing application ids and keeps criteria.

    Criteria are immutable after creation apart from the ``active`` flag,
    which is changed by replacing the stored criteria.
    """

    def __init__(self):
        self._applications: Dict[int, ApplicationCriteria] = {}
        self.next_app_id = 0

    def create(
        self,
        creator: str,
        country_id: BoundLike = 0,
        city_id: BoundLike = 0,
        min_salary: BoundLike = 0,
        max_salary: BoundLike = 0,
        min_birth_year: BoundLike = 0,
        max_birth_year: BoundLike = 0,
    ) -> ApplicationCriteria:
        """
        Publish new criteria.

        Integer arguments use 0 for "unconstrained". No cross-field checks
        are made (e.g. ``max_salary < min_salary`` is accepted).

        Raises:
            InvalidArgument: If a bound does not fit its plaintext width
        """
        if not creator:
            raise InvalidArgument("creator must be a non-empty account")
        criteria = ApplicationCriteria(
            app_id=self.next_app_id,
            creator=creator,
            country=_bound(country_id, FheType.EUINT32, "country_id"),
            city=_bound(city_id, FheType.EUINT32, "city_id"),
            min_salary=_bound(min_salary, FheType.EUINT64, "min_salary"),
            max_salary=_bound(max_salary, FheType.EUINT64, "max_salary"),
            min_birth_year=_bound(min_birth_year, FheType.EUINT16, "min_birth_year"),
            max_birth_year=_bound(max_birth_year, FheType.EUINT16, "max_birth_year"),
        )
        self._applications[criteria.app_id] = criteria
        self.next_app_id += 1
        return criteria

    def get(self, app_id: int) -> ApplicationCriteria:
        try:
            return self._applications[int(app_id)]
        except (KeyError, TypeError, ValueError):
            raise NotFound(f"Application {app_id} not found")

    def close(self, sender: str, app_id: int) -> bool:
        """
        Deactivate an application.

        Returns:
            True if the application was active and is now closed

        Raises:
            NotFound: Unknown id
            NotCreator: ``sender`` did not create the application
        """
        criteria = self.get(app_id)
        if criteria.creator != sender:
            raise NotCreator(f"Only {criteria.creator} may close application {app_id}")
        if not criteria.active:
            return False
        self._applications[criteria.app_id] = replace(criteria, active=False)
        return True

    def copy(self) -> "ApplicationStore":
        clone = ApplicationStore()
        clone._applications = dict(self._applications)
        clone.next_app_id = self.next_app_id
        return clone
