from typing import Dict
from .registry import IdentityRegistry, GroupRegistry
from .errors import AuthorizationError, ConflictError, ValidationError
from ..utils.logger import setup_logger

logger = setup_logger('cloudfest.admin')

class Treasury:
    """Accumulated registration payments and the payouts made from them."""

    def __init__(self):
        self.balance = 0
        self.payouts: Dict[str, int] = {}

    def deposit(self, amount: int):
        self.balance += amount

    def withdraw_all(self, to: str) -> int:
        if self.balance == 0:
            raise ConflictError("No fees to withdraw")
        amount, self.balance = self.balance, 0
        self.payouts[to] = self.payouts.get(to, 0) + amount
        return amount


class AdminControl:
    """Owner-only controls over the fee, the pause flag and deactivation.

    The pause flag is stored and toggled but no other operation consults it.
    """

    def __init__(self, owner: str, identities: IdentityRegistry, groups: GroupRegistry,
                 treasury: Treasury, registration_fee: int = 0):
        if not owner:
            raise ValidationError("Owner identity must not be empty")
        if registration_fee < 0:
            raise ValidationError("Registration fee must be non-negative")
        self.owner = owner
        self.identities = identities
        self.groups = groups
        self.treasury = treasury
        self.registration_fee = registration_fee
        self.paused = False

    def require_owner(self, caller: str):
        if caller != self.owner:
            logger.warning(f"Rejected owner-only call from {caller}")
            raise AuthorizationError(f"{caller} is not the owner")

    def set_registration_fee(self, caller: str, new_fee: int):
        self.require_owner(caller)
        if new_fee < 0:
            raise ValidationError("Registration fee must be non-negative")
        self.registration_fee = new_fee
        logger.info(f"Registration fee set to {new_fee}")

    def set_paused(self, caller: str, paused: bool):
        self.require_owner(caller)
        self.paused = bool(paused)
        logger.info(f"Paused flag set to {self.paused}")

    def deactivate_user(self, caller: str, identity: str):
        self.require_owner(caller)
        self.identities.deactivate(identity)

    def deactivate_group(self, caller: str, group_id: int):
        self.require_owner(caller)
        self.groups.deactivate(group_id)

    def withdraw_fees(self, caller: str) -> int:
        """Move the whole accumulated balance to the owner.

        Returns:
            int: Amount transferred

        Raises:
            AuthorizationError: If caller is not the owner
            ConflictError: If there is nothing to withdraw
        """
        self.require_owner(caller)
        amount = self.treasury.withdraw_all(self.owner)
        logger.info(f"Withdrew {amount} to owner {self.owner}")
        return amount
