import contextlib
import dataclasses
import threading
import time
from typing import Callable, List, Optional
from .models import (User, Message, GroupInfo, Notification, UserRegistered, MessageSent,
                     GroupCreated, UserJoinedGroup, UserLeftGroup)
from .registry import IdentityRegistry, GroupRegistry, MessageLedger
from .admin import AdminControl, Treasury
from .errors import ReentrancyError
from ..utils.logger import setup_logger

logger = setup_logger('cloudfest.authority')

Listener = Callable[[Notification], None]

def _now_ms() -> int:
    return int(time.time() * 1000)

class ChatAuthority:
    """Single serializing authority over the chat registry.

    Every operation, mutating or read-only, runs under one re-entrant lock,
    so writers are applied one at a time and readers never see a half-applied
    mutation. A mutation either passes all of its checks and commits together
    with its notification, or raises and leaves state untouched.

    Registration is additionally guarded against re-entry: while a
    registration is in progress (payment hook and notification delivery
    included), and while any listener is being notified, a nested mutating
    call from the same thread is rejected with ReentrancyError.
    """

    def __init__(self, owner: str, registration_fee: int = 0,
                 clock: Optional[Callable[[], int]] = None):
        """Initialize an empty registry.

        Args:
            owner (str): Identity holding the owner capability
            registration_fee (int): Initial registration fee. Defaults to 0
            clock (Callable[[], int], optional): Millisecond clock, for tests
        """
        self._lock = threading.RLock()
        self._registering = False
        self._publishing = False
        self._clock = clock or _now_ms
        self._listeners: List[Listener] = []
        self.events: List[Notification] = []

        self.identities = IdentityRegistry()
        self.groups = GroupRegistry(self.identities)
        self.ledger = MessageLedger(self.identities, self.groups)
        self.treasury = Treasury()
        self.admin = AdminControl(owner, self.identities, self.groups, self.treasury,
                                  registration_fee)
        logger.info(f"Chat authority initialized (owner {owner}, fee {registration_fee})")

    # Notifications

    def subscribe(self, listener: Listener):
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _publish(self, note: Notification):
        """Record a notification and hand it to every listener, in commit order.

        Listeners may read but not mutate: a mutating call made from inside a
        listener is rejected with ReentrancyError.
        """
        self.events.append(note)
        logger.debug(f"Notification: {note}")
        self._publishing = True
        try:
            for listener in list(self._listeners):
                try:
                    listener(note)
                except Exception:
                    # The mutation is already committed; an observer cannot undo it
                    logger.exception(f"Listener {listener!r} failed on {note.name}")
        finally:
            self._publishing = False

    @contextlib.contextmanager
    def _mutation(self, op: str):
        with self._lock:
            if self._registering:
                logger.warning(f"Rejected re-entrant {op} during registration")
                raise ReentrancyError(f"{op} called while a registration is in progress")
            if self._publishing:
                logger.warning(f"Rejected {op} from inside a notification listener")
                raise ReentrancyError(f"{op} called while notifications are being delivered")
            yield

    # Identity

    def register(self, identity: str, username: str, image_hash: str, payment: int = 0,
                 on_payment: Optional[Callable[[str, int], None]] = None) -> User:
        """Register ``identity`` as ``username``.

        The whole payment is kept, including any excess over the fee.

        Args:
            identity (str): Caller identity
            username (str): Desired username
            image_hash (str): Profile image reference
            payment (int): Amount attached to the call
            on_payment (Callable[[str, int], None], optional): Hook run while
                the payment is accepted; it may read but not mutate

        Returns:
            User: The new record
        """
        with self._mutation("register"):
            self._registering = True
            try:
                fee = self.admin.registration_fee
                self.identities.check_registration(identity, username, image_hash, payment, fee)
                if on_payment is not None:
                    on_payment(identity, payment)
                user = self.identities.register(identity, username, image_hash, payment, fee,
                                                self._clock())
                self.treasury.deposit(payment)
                self._publish(UserRegistered(identity=identity, username=username,
                                             image_hash=image_hash))
            finally:
                self._registering = False
            return dataclasses.replace(user)

    def update_profile(self, identity: str, image_hash: str) -> User:
        with self._mutation("update_profile"):
            return dataclasses.replace(self.identities.update_profile(identity, image_hash))

    # Messages

    def _sent(self, msg: Message) -> Message:
        self._publish(MessageSent(message_id=msg.id, sender=msg.sender,
                                  is_private=msg.is_private, group_id=msg.group_id))
        return msg

    def send_global(self, identity: str, content: str) -> Message:
        with self._mutation("send_global"):
            return self._sent(self.ledger.send_global(identity, content, self._clock()))

    def send_private(self, identity: str, recipient: str, content: str) -> Message:
        with self._mutation("send_private"):
            return self._sent(self.ledger.send_private(identity, recipient, content,
                                                       self._clock()))

    def send_group(self, identity: str, group_id: int, content: str) -> Message:
        with self._mutation("send_group"):
            return self._sent(self.ledger.send_group(identity, group_id, content,
                                                     self._clock()))

    # Groups

    def create_group(self, identity: str, name: str) -> int:
        with self._mutation("create_group"):
            group = self.groups.create(identity, name, self._clock())
            self._publish(GroupCreated(group_id=group.id, group_name=group.name,
                                       creator=identity))
            return group.id

    def join_group(self, identity: str, group_id: int):
        with self._mutation("join_group"):
            self.groups.join(identity, group_id)
            self._publish(UserJoinedGroup(group_id=group_id, identity=identity))

    def leave_group(self, identity: str, group_id: int):
        with self._mutation("leave_group"):
            self.groups.leave(identity, group_id)
            self._publish(UserLeftGroup(group_id=group_id, identity=identity))

    # Owner controls

    def set_registration_fee(self, identity: str, new_fee: int):
        with self._mutation("set_registration_fee"):
            self.admin.set_registration_fee(identity, new_fee)

    def set_paused(self, identity: str, paused: bool):
        with self._mutation("set_paused"):
            self.admin.set_paused(identity, paused)

    def deactivate_user(self, identity: str, target: str):
        with self._mutation("deactivate_user"):
            self.admin.deactivate_user(identity, target)

    def deactivate_group(self, identity: str, group_id: int):
        with self._mutation("deactivate_group"):
            self.admin.deactivate_group(identity, group_id)

    def withdraw_fees(self, identity: str) -> int:
        with self._mutation("withdraw_fees"):
            return self.admin.withdraw_fees(identity)

    # Queries

    def get_all_usernames(self) -> List[str]:
        with self._lock:
            return self.identities.list_usernames()

    def get_user_by_username(self, username: str) -> User:
        with self._lock:
            return dataclasses.replace(self.identities.lookup_by_username(username))

    def get_user_by_address(self, identity: str) -> User:
        with self._lock:
            return dataclasses.replace(self.identities.lookup_by_identity(identity))

    def get_ens_name(self, identity: str) -> str:
        with self._lock:
            return self.identities.ens_name(identity)

    def get_messages(self, start: int, count: int) -> List[Message]:
        with self._lock:
            return self.ledger.get_range(start, count)

    def get_group_messages(self, group_id: int, start: int, count: int) -> List[Message]:
        with self._lock:
            return self.ledger.group_page(group_id, start, count)

    def get_private_messages(self, identity: str, other: str, start: int,
                             count: int) -> List[Message]:
        with self._lock:
            return self.ledger.private_page(identity, other, start, count)

    def is_group_member(self, group_id: int, identity: str) -> bool:
        with self._lock:
            return self.groups.is_member(group_id, identity)

    def get_group_members(self, group_id: int) -> List[str]:
        with self._lock:
            return self.groups.members(group_id)

    def get_group_info(self, group_id: int) -> GroupInfo:
        with self._lock:
            return self.groups.info(group_id)

    @property
    def owner(self) -> str:
        return self.admin.owner

    @property
    def message_count(self) -> int:
        with self._lock:
            return self.ledger.count

    @property
    def group_count(self) -> int:
        with self._lock:
            return self.groups.count

    @property
    def registration_fee(self) -> int:
        with self._lock:
            return self.admin.registration_fee

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self.admin.paused

    @property
    def balance(self) -> int:
        with self._lock:
            return self.treasury.balance
