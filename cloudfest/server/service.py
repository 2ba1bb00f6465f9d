import asyncio, functools, uuid, grpc
from grpc import aio
from .authority import ChatAuthority
from .errors import CloudfestError, ValidationError
from .hub import Hub
from . import codec
from ..utils.logger import setup_logger

logger = setup_logger('cloudfest.server')

SERVICE_NAME = "cloudfest.Registry"
IDENTITY_HEADER = "x-identity"

def _field(request: dict, name: str, kind: type, default):
    """Read one request field, rejecting values of the wrong type.

    Args:
        request (dict): Decoded request
        name (str): Field name
        kind (type): Expected type (str, int or bool)
        default: Value used when the field is absent

    Raises:
        ValidationError: If the field is present with another type
    """
    value = request.get(name, default)
    # bool is an int subclass; flags and numbers must not stand in for each other
    if (kind is int and isinstance(value, bool)) or not isinstance(value, kind):
        raise ValidationError(f"Field '{name}' must be {kind.__name__}, got {value!r}")
    return value

def _text(request: dict, name: str) -> str:
    return _field(request, name, str, "")

def _number(request: dict, name: str) -> int:
    return _field(request, name, int, 0)

def typed_rejections(handler):
    """Abort the RPC with the mapped status when the registry rejects a call."""
    @functools.wraps(handler)
    async def wrapper(self, request, context):
        try:
            return await handler(self, request, context)
        except CloudfestError as e:
            logger.warning(f"{handler.__name__}: rejected with {type(e).__name__}: {e}")
            await context.abort(e.status_code, str(e))
    return wrapper

class RegistryService:
    """gRPC service exposing the chat registry.

    Requests and responses are protobuf Struct messages, handed to the
    handlers as plain dicts. The caller identity travels in the
    ``x-identity`` metadata entry; every typed registry rejection, malformed
    fields included, is turned into the matching gRPC status code.
    """

    def __init__(self, authority: ChatAuthority, hub: Hub):
        """Initialize the service over an authority and a notification hub.

        Args:
            authority (ChatAuthority): Registry state machine
            hub (Hub): Live notification fan-out; subscribed to the authority

        Attributes:
            write_lock: Serializes mutating handlers on the event loop
        """
        self.authority = authority
        self.hub = hub
        self.write_lock = asyncio.Lock()
        authority.subscribe(hub)

    async def _identity(self, context: aio.ServicerContext) -> str:
        metadata = dict(context.invocation_metadata() or ())
        identity = metadata.get(IDENTITY_HEADER)
        if not identity:
            logger.error("Rejected call without caller identity")
            await context.abort(grpc.StatusCode.UNAUTHENTICATED, f"Missing {IDENTITY_HEADER} metadata")
        return identity

    async def _write(self, fn, *args):
        async with self.write_lock:
            return fn(*args)

    # Identity

    @typed_rejections
    async def Register(self, request: dict, context: aio.ServicerContext):
        """Register the caller.

        Args:
            request (dict): username, image_hash and payment
            context (ServicerContext): gRPC service context

        Returns:
            dict: The new user record
        """
        identity = await self._identity(context)
        user = await self._write(self.authority.register, identity, _text(request, "username"),
                                 _text(request, "image_hash"), _number(request, "payment"))
        logger.info(f"Register: '{user.username}' registered for {identity}")
        return codec.to_wire(user)

    @typed_rejections
    async def UpdateProfile(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        user = await self._write(self.authority.update_profile, identity,
                                 _text(request, "image_hash"))
        return codec.to_wire(user)

    # Messages

    @typed_rejections
    async def SendGlobal(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        msg = await self._write(self.authority.send_global, identity, _text(request, "content"))
        return codec.to_wire(msg)

    @typed_rejections
    async def SendPrivate(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        msg = await self._write(self.authority.send_private, identity,
                                _text(request, "recipient"), _text(request, "content"))
        return codec.to_wire(msg)

    @typed_rejections
    async def SendGroup(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        msg = await self._write(self.authority.send_group, identity,
                                _number(request, "group_id"), _text(request, "content"))
        return codec.to_wire(msg)

    # Groups

    @typed_rejections
    async def CreateGroup(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        group_id = await self._write(self.authority.create_group, identity,
                                     _text(request, "name"))
        return {"group_id": group_id}

    @typed_rejections
    async def JoinGroup(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        await self._write(self.authority.join_group, identity, _number(request, "group_id"))
        return {}

    @typed_rejections
    async def LeaveGroup(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        await self._write(self.authority.leave_group, identity, _number(request, "group_id"))
        return {}

    # Owner controls

    @typed_rejections
    async def SetRegistrationFee(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        await self._write(self.authority.set_registration_fee, identity, _number(request, "fee"))
        return {}

    @typed_rejections
    async def SetPaused(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        await self._write(self.authority.set_paused, identity,
                          _field(request, "paused", bool, False))
        return {}

    @typed_rejections
    async def DeactivateUser(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        await self._write(self.authority.deactivate_user, identity, _text(request, "identity"))
        return {}

    @typed_rejections
    async def DeactivateGroup(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        await self._write(self.authority.deactivate_group, identity,
                          _number(request, "group_id"))
        return {}

    @typed_rejections
    async def WithdrawFees(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        amount = await self._write(self.authority.withdraw_fees, identity)
        return {"amount": amount}

    # Queries

    @typed_rejections
    async def GetAllUsernames(self, request: dict, context: aio.ServicerContext):
        return {"usernames": self.authority.get_all_usernames()}

    @typed_rejections
    async def GetUserByUsername(self, request: dict, context: aio.ServicerContext):
        return codec.to_wire(self.authority.get_user_by_username(_text(request, "username")))

    @typed_rejections
    async def GetUserByAddress(self, request: dict, context: aio.ServicerContext):
        return codec.to_wire(self.authority.get_user_by_address(_text(request, "identity")))

    @typed_rejections
    async def GetENSName(self, request: dict, context: aio.ServicerContext):
        """Resolve ``identity`` (the caller when omitted) to its ENS-like name."""
        identity = _text(request, "identity") or await self._identity(context)
        return {"name": self.authority.get_ens_name(identity)}

    @typed_rejections
    async def GetMessages(self, request: dict, context: aio.ServicerContext):
        messages = self.authority.get_messages(_number(request, "start"),
                                               _number(request, "count"))
        return {"messages": codec.to_wire(messages)}

    @typed_rejections
    async def GetGroupMessages(self, request: dict, context: aio.ServicerContext):
        """Fixed-size page of a group's messages; unused slots are empty records."""
        messages = self.authority.get_group_messages(_number(request, "group_id"),
                                                     _number(request, "start"),
                                                     _number(request, "count"))
        return {"messages": codec.to_wire(messages)}

    @typed_rejections
    async def GetPrivateMessages(self, request: dict, context: aio.ServicerContext):
        identity = await self._identity(context)
        messages = self.authority.get_private_messages(identity, _text(request, "other"),
                                                       _number(request, "start"),
                                                       _number(request, "count"))
        return {"messages": codec.to_wire(messages)}

    @typed_rejections
    async def IsGroupMember(self, request: dict, context: aio.ServicerContext):
        is_member = self.authority.is_group_member(_number(request, "group_id"),
                                                   _text(request, "identity"))
        return {"is_member": is_member}

    @typed_rejections
    async def GetGroupMembers(self, request: dict, context: aio.ServicerContext):
        return {"members": self.authority.get_group_members(_number(request, "group_id"))}

    @typed_rejections
    async def GetGroupInfo(self, request: dict, context: aio.ServicerContext):
        return codec.to_wire(self.authority.get_group_info(_number(request, "group_id")))

    async def GetState(self, request: dict, context: aio.ServicerContext):
        """Scalar counters and flags of the registry."""
        a = self.authority
        return {
            "owner": a.owner,
            "registration_fee": a.registration_fee,
            "paused": a.is_paused,
            "message_count": a.message_count,
            "group_count": a.group_count,
            "balance": a.balance,
        }

    async def Subscribe(self, request: dict, context: aio.ServicerContext):
        """Stream every notification committed after the call starts.

        Yields:
            dict: Flat notification record with an ``event`` name

        Side Effects:
            - Registers a queue in the hub for the lifetime of the stream
        """
        subscriber_id = uuid.uuid4().hex[:12]
        q = self.hub.register_queue(subscriber_id)
        logger.info(f"Subscribe: subscriber '{subscriber_id}' connected")
        try:
            while True:
                note = await q.get()
                yield note.to_dict()
        finally:
            self.hub.remove_queue(subscriber_id)
            logger.info(f"Subscribe: subscriber '{subscriber_id}' disconnected")


UNARY_METHODS = (
    "Register", "UpdateProfile", "SendGlobal", "SendPrivate", "SendGroup",
    "CreateGroup", "JoinGroup", "LeaveGroup",
    "SetRegistrationFee", "SetPaused", "DeactivateUser", "DeactivateGroup", "WithdrawFees",
    "GetAllUsernames", "GetUserByUsername", "GetUserByAddress", "GetENSName",
    "GetMessages", "GetGroupMessages", "GetPrivateMessages",
    "IsGroupMember", "GetGroupMembers", "GetGroupInfo", "GetState",
)

def build_handler(service: RegistryService) -> grpc.GenericRpcHandler:
    """Build the generic handler routing every registry method to ``service``."""
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(service, name),
            request_deserializer=codec.decode,
            response_serializer=codec.encode,
        )
        for name in UNARY_METHODS
    }
    handlers["Subscribe"] = grpc.unary_stream_rpc_method_handler(
        service.Subscribe,
        request_deserializer=codec.decode,
        response_serializer=codec.encode,
    )
    return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)
