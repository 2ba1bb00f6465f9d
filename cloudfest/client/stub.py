from grpc import aio
from ..server import codec
from ..server.service import SERVICE_NAME, UNARY_METHODS, IDENTITY_HEADER

class RegistryStub:
    """Client for the registry service.

    Every unary method is available as a coroutine attribute named after the
    RPC, taking the request as a dict (sent as a protobuf Struct), e.g.
    ``await stub.SendGlobal({"content": "hi"})``. Calls carry the configured
    identity in the ``x-identity`` metadata entry.
    """

    def __init__(self, channel: aio.Channel, identity: str = ""):
        self.identity = identity
        self._calls = {
            name: channel.unary_unary(
                f"/{SERVICE_NAME}/{name}",
                request_serializer=codec.encode,
                response_deserializer=codec.decode,
            )
            for name in UNARY_METHODS
        }
        self._subscribe = channel.unary_stream(
            f"/{SERVICE_NAME}/Subscribe",
            request_serializer=codec.encode,
            response_deserializer=codec.decode,
        )

    def _metadata(self):
        return ((IDENTITY_HEADER, self.identity),) if self.identity else None

    def __getattr__(self, name):
        calls = self.__dict__.get("_calls", {})
        if name not in calls:
            raise AttributeError(name)
        call = calls[name]

        async def invoke(request: dict = None):
            return await call(request or {}, metadata=self._metadata())
        return invoke

    def Subscribe(self):
        """Open the notification stream; iterate the returned call."""
        return self._subscribe({}, metadata=self._metadata())
