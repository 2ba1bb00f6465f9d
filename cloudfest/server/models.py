from dataclasses import dataclass, field, asdict
from typing import ClassVar, Dict, List, NamedTuple, Optional, Set

ENS_SUFFIX = ".cloudfest"

@dataclass
class User:
    """Represents a registered identity.

    Attributes:
        identity (str): Authenticated principal owning this record
        username (str): Unique username (1-20 bytes)
        image_hash (str): Profile image reference, never empty
        registration_time (int): Unix timestamp in milliseconds of registration
        is_active (bool): False once the owner deactivated the user
    """
    identity: str
    username: str
    image_hash: str
    registration_time: int
    is_active: bool = True

    @property
    def ens_name(self) -> str:
        return self.username + ENS_SUFFIX

@dataclass(frozen=True)
class Message:
    """Represents one immutable ledger entry.

    A message is global (no recipient, group_id 0), private (recipient set,
    is_private True) or addressed to a group (group_id set, is_private False).
    Group ids start at 0, so a global message and a message to group 0 differ
    only in the operation that produced them.

    Attributes:
        id (int): Sequential ledger index, starting at 0
        sender (str): Identity of the sender
        recipient (Optional[str]): Recipient identity for private messages
        is_private (bool): True for private messages
        content (str): Message body (1-500 bytes)
        timestamp (int): Unix timestamp in milliseconds when recorded
        group_id (int): Target group id, 0 for global and private messages
    """
    id: int
    sender: str
    recipient: Optional[str]
    is_private: bool
    content: str
    timestamp: int
    group_id: int = 0

    @classmethod
    def empty(cls) -> "Message":
        """Placeholder filling unused slots of a fixed-size page."""
        return cls(id=0, sender="", recipient=None, is_private=False,
                   content="", timestamp=0, group_id=0)

class MemberList:
    """Membership set kept in lockstep with an ordered member list.

    Removal overwrites the leaving member's slot with the last member and
    truncates, so the moved member changes position.
    """

    def __init__(self, members=()):
        self._order: List[str] = []
        self._positions: Dict[str, int] = {}
        for identity in members:
            self.add(identity)

    def __contains__(self, identity: str) -> bool:
        return identity in self._positions

    def __len__(self) -> int:
        return len(self._order)

    def add(self, identity: str) -> bool:
        if identity in self._positions:
            return False
        self._positions[identity] = len(self._order)
        self._order.append(identity)
        return True

    def remove(self, identity: str) -> bool:
        pos = self._positions.pop(identity, None)
        if pos is None:
            return False
        last = self._order.pop()
        if last != identity:
            self._order[pos] = last
            self._positions[last] = pos
        return True

    def as_set(self) -> Set[str]:
        return set(self._positions)

    def as_list(self) -> List[str]:
        return list(self._order)

@dataclass
class Group:
    """Represents a chat group.

    Attributes:
        id (int): Sequential group id, starting at 0
        name (str): Group name (1-50 bytes)
        creator (str): Identity of the creator, always the first member
        created_at (int): Unix timestamp in milliseconds when created
        members (MemberList): Current members in join order (modulo swap-remove)
        is_active (bool): False once the owner deactivated the group
    """
    id: int
    name: str
    creator: str
    created_at: int
    members: MemberList = field(default_factory=MemberList)
    is_active: bool = True

class GroupInfo(NamedTuple):
    name: str
    creator: str
    member_count: int
    created_at: int

# Notifications emitted on successful mutations

@dataclass(frozen=True)
class Notification:
    name: ClassVar[str] = "Notification"

    def to_dict(self) -> dict:
        rec = asdict(self)
        rec["event"] = self.name
        return rec

@dataclass(frozen=True)
class UserRegistered(Notification):
    name: ClassVar[str] = "UserRegistered"
    identity: str
    username: str
    image_hash: str

@dataclass(frozen=True)
class MessageSent(Notification):
    name: ClassVar[str] = "MessageSent"
    message_id: int
    sender: str
    is_private: bool
    group_id: int

@dataclass(frozen=True)
class GroupCreated(Notification):
    name: ClassVar[str] = "GroupCreated"
    group_id: int
    group_name: str
    creator: str

@dataclass(frozen=True)
class UserJoinedGroup(Notification):
    name: ClassVar[str] = "UserJoinedGroup"
    group_id: int
    identity: str

@dataclass(frozen=True)
class UserLeftGroup(Notification):
    name: ClassVar[str] = "UserLeftGroup"
    group_id: int
    identity: str

NOTIFICATION_TYPES = {
    cls.name: cls
    for cls in (UserRegistered, MessageSent, GroupCreated, UserJoinedGroup, UserLeftGroup)
}

def notification_from_dict(rec: dict) -> Notification:
    """Rebuild a notification from its flat dict form."""
    rec = dict(rec)
    cls = NOTIFICATION_TYPES[rec.pop("event")]
    return cls(**rec)
