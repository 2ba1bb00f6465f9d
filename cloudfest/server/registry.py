from typing import Callable, Dict, List, Optional
from .models import User, Message, Group, GroupInfo, MemberList
from .errors import ValidationError, AuthorizationError, ConflictError, NotFoundError, PaymentError
from ..utils.logger import setup_logger

logger = setup_logger('cloudfest.registry')

MAX_USERNAME_BYTES = 20
MAX_CONTENT_BYTES = 500
MAX_GROUP_NAME_BYTES = 50

def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))

def _check_length(value: str, limit: int, what: str):
    """Reject empty values and values longer than ``limit`` UTF-8 bytes."""
    size = _byte_len(value or "")
    if size == 0 or size > limit:
        raise ValidationError(f"{what} must be 1-{limit} bytes, got {size}")

def _check_window(start: int, count: int):
    if start < 0 or count < 0:
        raise ValidationError("start and count must be non-negative")


class IdentityRegistry:
    """Registry of user records and the username index.

    Records are never deleted: deactivation only flips ``is_active``, and the
    username stays reserved by the identity that registered it.
    """

    def __init__(self):
        self.users_by_identity: Dict[str, User] = {}
        self.identity_by_username: Dict[str, str] = {}
        self._usernames: List[str] = []

    def check_registration(self, identity: str, username: str, image_hash: str,
                           payment: int, fee: int):
        """Raise the error `register` would raise, without mutating anything."""
        if payment < 0:
            raise ValidationError("Payment must be non-negative")
        if payment < fee:
            raise PaymentError(f"Registration requires {fee}, got {payment}")
        if identity in self.users_by_identity:
            raise ConflictError(f"Identity {identity} is already registered")
        _check_length(username, MAX_USERNAME_BYTES, "Username")
        if username in self.identity_by_username:
            raise ConflictError(f"Username {username} is already taken")
        if not image_hash:
            raise ValidationError("Image hash must not be empty")

    def register(self, identity: str, username: str, image_hash: str,
                 payment: int, fee: int, now: int) -> User:
        """Create the user record for ``identity``.

        Args:
            identity (str): Caller identity
            username (str): Desired username (1-20 bytes)
            image_hash (str): Profile image reference, non-empty
            payment (int): Amount attached to the call
            fee (int): Current registration fee
            now (int): Registration timestamp in milliseconds

        Returns:
            User: The new record

        Raises:
            PaymentError: If payment is below the fee
            ConflictError: If the identity is already registered or the
                username is taken
            ValidationError: If username or image hash is malformed
        """
        self.check_registration(identity, username, image_hash, payment, fee)
        user = User(identity=identity, username=username, image_hash=image_hash,
                    registration_time=now)
        self.users_by_identity[identity] = user
        self.identity_by_username[username] = identity
        self._usernames.append(username)
        logger.info(f"New user registered: {username} (identity: {identity})")
        return user

    def update_profile(self, identity: str, image_hash: str) -> User:
        """Replace the caller's profile image reference.

        Args:
            identity (str): Caller identity
            image_hash (str): New image reference, non-empty

        Returns:
            User: The updated record

        Raises:
            AuthorizationError: If the caller is not an active registered user
            ValidationError: If image_hash is empty
        """
        user = self.require_active(identity)
        if not image_hash:
            raise ValidationError("Image hash must not be empty")
        user.image_hash = image_hash
        logger.info(f"Profile updated for {user.username}")
        return user

    def require_active(self, identity: str) -> User:
        """Return the caller's active record or raise AuthorizationError."""
        user = self.users_by_identity.get(identity)
        if user is None or not user.is_active:
            raise AuthorizationError(f"{identity} is not an active registered user")
        return user

    def lookup_by_identity(self, identity: str) -> User:
        """Return the active record of ``identity``.

        Raises:
            NotFoundError: If the identity is unknown or deactivated
        """
        user = self.users_by_identity.get(identity)
        if user is None or not user.is_active:
            raise NotFoundError(f"No active user for identity {identity}")
        return user

    def lookup_by_username(self, username: str) -> User:
        """Return the active record registered under ``username``.

        Raises:
            NotFoundError: If the username is unknown or its owner deactivated
        """
        identity = self.identity_by_username.get(username)
        if identity is None:
            raise NotFoundError(f"Unknown username {username}")
        return self.lookup_by_identity(identity)

    def ens_name(self, identity: str) -> str:
        """ENS-like display name, ``username + ".cloudfest"``."""
        return self.require_active(identity).ens_name

    def list_usernames(self) -> List[str]:
        """All usernames in registration order, deactivated owners included."""
        return list(self._usernames)

    def deactivate(self, identity: str) -> User:
        """Flip an active user to inactive; the record and username are kept.

        Raises:
            NotFoundError: If there is no active user for ``identity``

        Side Effects:
            - Logs the deactivation
        """
        user = self.lookup_by_identity(identity)
        user.is_active = False
        logger.info(f"User deactivated: {user.username} (identity: {identity})")
        return user


class GroupRegistry:
    """Registry of groups and their memberships."""

    def __init__(self, identities: IdentityRegistry):
        self.identities = identities
        self._groups: List[Group] = []

    @property
    def count(self) -> int:
        return len(self._groups)

    def get(self, group_id: int) -> Group:
        """Return the group with id ``group_id`` or raise NotFoundError."""
        if group_id < 0 or group_id >= len(self._groups):
            raise NotFoundError(f"Group {group_id} does not exist")
        return self._groups[group_id]

    def create(self, identity: str, name: str, now: int) -> Group:
        """Create a group with the caller as its only member.

        Raises:
            AuthorizationError: If the caller is not an active registered user
            ValidationError: If the name is not 1-50 bytes
        """
        self.identities.require_active(identity)
        _check_length(name, MAX_GROUP_NAME_BYTES, "Group name")

        group = Group(id=len(self._groups), name=name, creator=identity,
                      created_at=now, members=MemberList([identity]))
        self._groups.append(group)
        logger.info(f"New group created: {name} (id {group.id}) by {identity}")
        return group

    def join(self, identity: str, group_id: int) -> Group:
        """Add the caller to a group, after the members already there.

        Args:
            identity (str): Caller identity
            group_id (int): Group to join

        Returns:
            Group: The updated group

        Raises:
            NotFoundError: If the group does not exist
            AuthorizationError: If the caller is not an active registered user
            ConflictError: If the group is inactive or the caller is already a member
        """
        group = self.get(group_id)
        self.identities.require_active(identity)
        if not group.is_active:
            logger.warning(f"Attempt to join inactive group {group_id} by {identity}")
            raise ConflictError(f"Group {group_id} is not active")
        if identity in group.members:
            logger.debug(f"{identity} already in group {group_id}")
            raise ConflictError(f"{identity} is already a member of group {group_id}")
        group.members.add(identity)
        logger.info(f"Added {identity} to group {group_id}")
        return group

    def leave(self, identity: str, group_id: int) -> Group:
        """Remove the caller from a group.

        The last member in the ordered list takes the leaving member's slot.

        Args:
            identity (str): Caller identity
            group_id (int): Group to leave

        Returns:
            Group: The updated group

        Raises:
            NotFoundError: If the group does not exist
            AuthorizationError: If the caller is not a member
        """
        group = self.get(group_id)
        if identity not in group.members:
            raise AuthorizationError(f"{identity} is not a member of group {group_id}")
        group.members.remove(identity)
        logger.info(f"Removed {identity} from group {group_id}")
        return group

    def is_member(self, group_id: int, identity: str) -> bool:
        """True if ``identity`` currently belongs to the group."""
        return identity in self.get(group_id).members

    def members(self, group_id: int) -> List[str]:
        """Current members in list order (join order, modulo swap-remove)."""
        return self.get(group_id).members.as_list()

    def info(self, group_id: int) -> GroupInfo:
        """Return (name, creator, member_count, created_at) for a group.

        Raises:
            NotFoundError: If the group does not exist
        """
        group = self.get(group_id)
        return GroupInfo(name=group.name, creator=group.creator,
                         member_count=len(group.members), created_at=group.created_at)

    def deactivate(self, group_id: int) -> Group:
        """Mark a group inactive; members stay but joins and sends stop.

        Raises:
            NotFoundError: If the group does not exist
        """
        group = self.get(group_id)
        group.is_active = False
        logger.info(f"Group deactivated: {group.name} (id {group_id})")
        return group


class MessageLedger:
    """Append-only ledger of global, private and group messages.

    Ids are ledger positions, so they are sequential from 0 and never reused.
    """

    def __init__(self, identities: IdentityRegistry, groups: GroupRegistry):
        self.identities = identities
        self.groups = groups
        self._messages: List[Message] = []

    @property
    def count(self) -> int:
        return len(self._messages)

    def _append(self, sender: str, content: str, now: int, recipient: Optional[str] = None,
                is_private: bool = False, group_id: int = 0) -> Message:
        msg = Message(id=len(self._messages), sender=sender, recipient=recipient,
                      is_private=is_private, content=content, timestamp=now,
                      group_id=group_id)
        self._messages.append(msg)
        return msg

    def send_global(self, sender: str, content: str, now: int) -> Message:
        """Append a message visible to everyone.

        Raises:
            AuthorizationError: If the sender is not an active registered user
            ValidationError: If content is not 1-500 bytes
        """
        self.identities.require_active(sender)
        _check_length(content, MAX_CONTENT_BYTES, "Content")
        msg = self._append(sender, content, now)
        logger.info(f"New global message saved: {msg.id} from {sender}")
        return msg

    def send_private(self, sender: str, recipient: str, content: str, now: int) -> Message:
        """Append a private message from ``sender`` to ``recipient``.

        Raises:
            AuthorizationError: If the sender is not an active registered user
            ValidationError: If content is malformed or recipient is the sender
            NotFoundError: If the recipient is not an active registered user
        """
        self.identities.require_active(sender)
        _check_length(content, MAX_CONTENT_BYTES, "Content")
        if recipient == sender:
            raise ValidationError("Cannot send a private message to yourself")
        self.identities.lookup_by_identity(recipient)
        msg = self._append(sender, content, now, recipient=recipient, is_private=True)
        logger.info(f"New private message saved: {msg.id} from {sender} to {recipient}")
        return msg

    def send_group(self, sender: str, group_id: int, content: str, now: int) -> Message:
        """Append a message to a group the sender belongs to.

        Raises:
            AuthorizationError: If the sender is unregistered or not a member
            ValidationError: If content is not 1-500 bytes
            NotFoundError: If the group does not exist
            ConflictError: If the group is inactive
        """
        self.identities.require_active(sender)
        _check_length(content, MAX_CONTENT_BYTES, "Content")
        group = self.groups.get(group_id)
        if not group.is_active:
            raise ConflictError(f"Group {group_id} is not active")
        if sender not in group.members:
            raise AuthorizationError(f"{sender} is not a member of group {group_id}")
        msg = self._append(sender, content, now, group_id=group_id)
        logger.info(f"New group message saved: {msg.id} from {sender} to group {group_id}")
        return msg

    def get_range(self, start: int, count: int) -> List[Message]:
        """Messages ``[start, min(start + count, total))`` in id order.

        Raises:
            NotFoundError: If start is not a valid ledger index
        """
        _check_window(start, count)
        if start >= len(self._messages):
            raise NotFoundError(f"Start index {start} out of range ({len(self._messages)} messages)")
        return self._messages[start:start + count]

    def _page(self, matches: Callable[[Message], bool], start: int, count: int) -> List[Message]:
        """Skip ``start`` matches then collect up to ``count`` of them.

        The page always has ``count`` slots; slots past the last match hold
        ``Message.empty()``.
        """
        _check_window(start, count)
        page = [Message.empty()] * count
        found = 0
        for msg in self._messages:
            if found >= start + count:
                break
            if not matches(msg):
                continue
            if found >= start:
                page[found - start] = msg
            found += 1
        logger.debug(f"Page start={start} count={count} filled {max(0, found - start)} slots")
        return page

    def group_page(self, group_id: int, start: int, count: int) -> List[Message]:
        """Fixed-size page of non-private messages addressed to ``group_id``."""
        self.groups.get(group_id)
        # Global messages also carry group_id 0, so they show up in group 0's pages
        return self._page(lambda m: not m.is_private and m.group_id == group_id, start, count)

    def private_page(self, identity: str, other: str, start: int, count: int) -> List[Message]:
        """Fixed-size page of private messages between two users, both directions.

        Raises:
            AuthorizationError: If ``identity`` is not an active registered user
            NotFoundError: If ``other`` is not an active registered user
        """
        self.identities.require_active(identity)
        self.identities.lookup_by_identity(other)
        pair = {identity, other}
        return self._page(
            lambda m: m.is_private and m.sender in pair and m.recipient in pair
            and m.sender != m.recipient,
            start, count,
        )
