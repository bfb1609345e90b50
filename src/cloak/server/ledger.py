"""
Serialized state machine hosting the eligibility core.

Every mutating operation is a value applied by ``transition``, which
returns a new state and never modifies the one it was given. Only the
stores an operation writes are copied, and the event log is persistent,
so an operation costs time in the stores it touches rather than in the
whole history. The ledger swaps the new state in only when the
transition succeeds, so a rejected operation leaves no partial writes,
no partial grants and no events behind.
"""
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type, Union

from cloak.fabric.base import CiphertextFabric
from cloak.shared.acl import AccessControlList
from cloak.shared.errors import CloakError, InvalidArgument
from cloak.shared.utils import normalize_account
from cloak.shared.protocol import (
    ApplicationClosed,
    ApplicationCreated,
    Applied,
    Bound,
    ExternalHandle,
    Handle,
    InputBundle,
    UserRegistered,
)
from cloak.server.applications import ApplicationStore
from cloak.server.evaluator import EligibilityEvaluator
from cloak.server.registry import EncryptedRegistry
from cloak.server.results import ApplicationResultStore

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_ADDRESS = "0x00000000000000000000000000000000c10a4e01"

Event = Union[UserRegistered, ApplicationCreated, ApplicationClosed, Applied]
BoundLike = Union[int, Bound]


class EventLog:
    """
    Append-only persistent event log.

    ``appended`` returns a new log that shares every earlier entry with
    this one, so older states keep seeing their own history.
    """

    __slots__ = ("_event", "_parent", "_length")

    def __init__(self, event: Optional[Event] = None, parent: Optional["EventLog"] = None):
        self._event = event
        self._parent = parent
        self._length = 0 if parent is None else len(parent) + 1

    def appended(self, event: Event) -> "EventLog":
        return EventLog(event, self)

    def __len__(self) -> int:
        return self._length

    def __iter__(self) -> Iterator[Event]:
        events: List[Event] = []
        node = self
        while node._parent is not None:
            events.append(node._event)
            node = node._parent
        return reversed(events)


# Operations

@dataclass(frozen=True)
class Register:
    sender: str
    username: str
    country: ExternalHandle
    city: ExternalHandle
    salary: ExternalHandle
    birth_year: ExternalHandle
    proof: bytes


@dataclass(frozen=True)
class CreateApplication:
    sender: str
    country_id: BoundLike = 0
    city_id: BoundLike = 0
    min_salary: BoundLike = 0
    max_salary: BoundLike = 0
    min_birth_year: BoundLike = 0
    max_birth_year: BoundLike = 0


@dataclass(frozen=True)
class CloseApplication:
    sender: str
    app_id: int


@dataclass(frozen=True)
class SubmitApplication:
    sender: str
    app_id: int


Operation = Union[Register, CreateApplication, CloseApplication, SubmitApplication]


@dataclass
class LedgerState:
    """All state owned by the core."""
    address: str
    registry: EncryptedRegistry = field(default_factory=EncryptedRegistry)
    applications: ApplicationStore = field(default_factory=ApplicationStore)
    results: ApplicationResultStore = field(default_factory=ApplicationResultStore)
    acl: AccessControlList = field(default_factory=AccessControlList)
    events: EventLog = field(default_factory=EventLog)
    block: int = 0


def _register(state: LedgerState, op: Register, fabric: CiphertextFabric) -> None:
    state.registry.register(
        op.sender,
        op.username,
        (op.country, op.city, op.salary, op.birth_year),
        op.proof,
        fabric,
        state.acl,
        state.address,
    )
    state.events = state.events.appended(UserRegistered(op.sender, op.username, block=state.block))


def _create_application(state: LedgerState, op: CreateApplication, fabric: CiphertextFabric) -> int:
    criteria = state.applications.create(
        op.sender,
        op.country_id,
        op.city_id,
        op.min_salary,
        op.max_salary,
        op.min_birth_year,
        op.max_birth_year,
    )
    state.events = state.events.appended(ApplicationCreated(criteria.app_id, op.sender, block=state.block))
    return criteria.app_id


def _close_application(state: LedgerState, op: CloseApplication, fabric: CiphertextFabric) -> bool:
    closed = state.applications.close(op.sender, op.app_id)
    if closed:
        state.events = state.events.appended(ApplicationClosed(op.app_id, op.sender, block=state.block))
    return closed


def _submit_application(state: LedgerState, op: SubmitApplication, fabric: CiphertextFabric) -> Handle:
    result = EligibilityEvaluator(fabric).submit(
        op.sender,
        op.app_id,
        state.registry,
        state.applications,
        state.results,
        state.acl,
    )
    state.events = state.events.appended(Applied(int(op.app_id), op.sender, result, block=state.block))
    return result


Handler = Callable[[LedgerState, Any, CiphertextFabric], Any]

# handler, stores it writes
_HANDLERS: Dict[Type, Tuple[Handler, Tuple[str, ...]]] = {
    Register: (_register, ("registry", "acl")),
    CreateApplication: (_create_application, ("applications",)),
    CloseApplication: (_close_application, ("applications",)),
    SubmitApplication: (_submit_application, ("results", "acl")),
}


def transition(
    state: LedgerState,
    op: Operation,
    fabric: CiphertextFabric,
) -> Tuple[LedgerState, Any]:
    """
    Apply one operation.

    Args:
        state: Current state (never modified)
        op: Operation to apply; its sender is lowercased before use
        fabric: Fabric evaluating ciphertext operations

    Returns:
        Tuple of (new_state, operation result)

    Raises:
        CloakError: If the operation is rejected
    """
    entry = _HANDLERS.get(type(op))
    if entry is None:
        raise InvalidArgument(f"Unsupported operation {type(op).__name__}")
    if not isinstance(op.sender, str) or not op.sender:
        raise InvalidArgument("Operation sender must be a non-empty account")
    handler, writes = entry
    op = replace(op, sender=normalize_account(op.sender))

    snapshots = {name: getattr(state, name).copy() for name in writes}
    new_state = replace(state, block=state.block + 1, **snapshots)
    result = handler(new_state, op, fabric)
    return new_state, result


class EligibilityLedger:
    """
    Ordered, atomic host for the eligibility core.

    Operations are applied one at a time; reads observe the last committed
    state.
    """

    def __init__(self, fabric: CiphertextFabric, address: str = DEFAULT_LEDGER_ADDRESS):
        """
        Initialize ledger.

        Args:
            fabric: Fabric used for input verification and evaluation
            address: Address that input proofs must be bound to
        """
        self.fabric = fabric
        self._state = LedgerState(address=address)
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        return self._state.address

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def acl(self) -> AccessControlList:
        return self._state.acl

    @property
    def block(self) -> int:
        return self._state.block

    @property
    def next_app_id(self) -> int:
        return self._state.applications.next_app_id

    def execute(self, op: Operation) -> Any:
        """
        Apply ``op`` atomically and return its result.

        Ciphertexts the fabric created for a rejected operation are
        discarded with it.
        """
        with self._lock:
            try:
                with self.fabric.scope():
                    new_state, result = transition(self._state, op, self.fabric)
            except CloakError as e:
                logger.info("Rejected %s from %s: %s", type(op).__name__, getattr(op, "sender", None), e.kind)
                raise
            self._state = new_state
        logger.debug("Committed %s from %s at block %d", type(op).__name__, op.sender, new_state.block)
        return result

    # Mutating operations

    def register(
        self,
        sender: str,
        username: str,
        country: ExternalHandle,
        city: ExternalHandle,
        salary: ExternalHandle,
        birth_year: ExternalHandle,
        proof: bytes,
    ) -> None:
        self.execute(Register(sender, username, country, city, salary, birth_year, proof))

    def register_bundle(self, sender: str, username: str, bundle: InputBundle) -> None:
        """Register with a bundle holding exactly country, city, salary, birth year."""
        if len(bundle.handles) != 4:
            raise InvalidArgument(f"Expected 4 encrypted inputs, got {len(bundle.handles)}")
        self.register(sender, username, *bundle.handles, bundle.proof)

    def create_application(
        self,
        sender: str,
        country_id: BoundLike = 0,
        city_id: BoundLike = 0,
        min_salary: BoundLike = 0,
        max_salary: BoundLike = 0,
        min_birth_year: BoundLike = 0,
        max_birth_year: BoundLike = 0,
    ) -> int:
        return self.execute(CreateApplication(
            sender, country_id, city_id, min_salary, max_salary, min_birth_year, max_birth_year,
        ))

    def close_application(self, sender: str, app_id: int) -> bool:
        return self.execute(CloseApplication(sender, app_id))

    def submit_application(self, sender: str, app_id: int) -> Handle:
        return self.execute(SubmitApplication(sender, app_id))

    # Reads

    def get_user(self, account: str) -> tuple:
        """(username, country, city, salary, birth_year, registered)"""
        return self._state.registry.get(normalize_account(account)).as_tuple()

    def get_application(self, app_id: int) -> tuple:
        """(creator, active, countryId, cityId, minSalary, maxSalary, minBirthYear, maxBirthYear)"""
        return self._state.applications.get(app_id).as_tuple()

    def get_application_result(self, app_id: int, account: str) -> Handle:
        return self._state.results.get(app_id, normalize_account(account))

    def events(self, kind: Optional[Type] = None) -> List[Event]:
        if kind is None:
            return list(self._state.events)
        return [e for e in self._state.events if isinstance(e, kind)]
