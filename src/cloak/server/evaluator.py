"""
Eligibility evaluation over encrypted attributes.

The evaluator turns one UserRecord and one ApplicationCriteria into a
single encrypted boolean. It branches only on the plaintext criteria
bounds; every comparison against an attribute happens in the fabric.
"""
import logging
from functools import reduce
from typing import List

from cloak.fabric.base import CiphertextFabric
from cloak.shared.acl import AccessControlList
from cloak.shared.errors import ApplicationInactive, NotRegistered
from cloak.shared.protocol import ApplicationCriteria, Bound, Handle, UserRecord
from cloak.shared.utils import Timer
from cloak.server.applications import ApplicationStore
from cloak.server.registry import EncryptedRegistry
from cloak.server.results import ApplicationResultStore

logger = logging.getLogger(__name__)


class EligibilityEvaluator:
    """
    Computes encrypted eligibility verdicts.

    Performs: per-field checks -> AND of all fields -> grant to applicant.
    """

    def __init__(self, fabric: CiphertextFabric):
        """
        Initialize evaluator.

        Args:
            fabric: Fabric providing the homomorphic operators
        """
        self.fabric = fabric

    def _equals(self, attribute: Handle, bound: Bound) -> Handle:
        if bound.is_any:
            return self.fabric.true()
        return self.fabric.eq(attribute, bound.value)

    def _within(self, attribute: Handle, lower: Bound, upper: Bound) -> Handle:
        low = self.fabric.true() if lower.is_any else self.fabric.ge(attribute, lower.value)
        high = self.fabric.true() if upper.is_any else self.fabric.le(attribute, upper.value)
        return self.fabric.and_(low, high)

    def field_checks(self, record: UserRecord, criteria: ApplicationCriteria) -> List[Handle]:
        """Per-field encrypted booleans: country, city, salary, birth year."""
        return [
            self._equals(record.country, criteria.country),
            self._equals(record.city, criteria.city),
            self._within(record.salary, criteria.min_salary, criteria.max_salary),
            self._within(record.birth_year, criteria.min_birth_year, criteria.max_birth_year),
        ]

    def evaluate(self, record: UserRecord, criteria: ApplicationCriteria) -> Handle:
        """
        Compute the encrypted verdict without touching any store.

        Args:
            record: Applicant's encrypted attributes
            criteria: Plaintext criteria

        Returns:
            ebool handle, true iff every field is satisfied. Intermediate
            ciphertexts are discarded.
        """
        with Timer() as t, self.fabric.scope() as created:
            result = reduce(self.fabric.and_, self.field_checks(record, criteria))
            self.fabric.discard(d for d in created if d != result.digest)
        logger.debug("Evaluated application %d in %.2fms", criteria.app_id, t.elapsed_ms)
        return result

    def submit(
        self,
        sender: str,
        app_id: int,
        registry: EncryptedRegistry,
        applications: ApplicationStore,
        results: ApplicationResultStore,
        acl: AccessControlList,
    ) -> Handle:
        """
        Evaluate ``sender`` against an application and store the verdict.

        Only ``sender`` is granted decrypt access to the result. A previous
        result for the same pair is replaced.

        Raises:
            NotFound: Unknown application id
            ApplicationInactive: Application has been closed
            NotRegistered: ``sender`` has no registered record
        """
        criteria = applications.get(app_id)
        if not criteria.active:
            raise ApplicationInactive(f"Application {app_id} is closed")
        record = registry.get(sender)
        if not record.registered:
            raise NotRegistered(f"Account {sender} is not registered")

        result = self.evaluate(record, criteria)
        acl.allow(result, sender)
        results.put(criteria.app_id, sender, result)
        return result
