import asyncio
import unittest
from types import SimpleNamespace
import grpc
from cloudfest.server.authority import ChatAuthority
from cloudfest.server.service import RegistryService, build_handler, UNARY_METHODS
from cloudfest.server.hub import Hub
from cloudfest.server import codec

FEE = 5

class Aborted(Exception):
    def __init__(self, code, details):
        super().__init__(details)
        self.code = code
        self.details = details

class FakeContext:
    """Stand-in for aio.ServicerContext carrying the caller identity."""

    def __init__(self, identity=None):
        self.identity = identity

    def invocation_metadata(self):
        return (("x-identity", self.identity),) if self.identity else ()

    async def abort(self, code, details):
        raise Aborted(code, details)

class TestRegistryService(unittest.TestCase):
    def setUp(self):
        self.authority = ChatAuthority("owner", registration_fee=FEE)
        self.service = RegistryService(self.authority, Hub())

    def run_async(self, coro):
        return asyncio.run(coro)

    def test_register_and_lookup(self):
        async def call():
            user = await self.service.Register(
                {"username": "alice", "image_hash": "QmA", "payment": FEE}, FakeContext("a1"))
            found = await self.service.GetUserByUsername({"username": "alice"}, FakeContext())
            ens = await self.service.GetENSName({}, FakeContext("a1"))
            return user, found, ens

        user, found, ens = self.run_async(call())
        self.assertEqual(user["identity"], "a1")
        self.assertEqual(found["image_hash"], "QmA")
        self.assertEqual(ens, {"name": "alice.cloudfest"})

    def test_error_mapping(self):
        async def call(method, request, identity=None):
            try:
                await getattr(self.service, method)(request, FakeContext(identity))
            except Aborted as e:
                return e.code
            return None

        async def scenario():
            return [
                await call("Register", {"username": "alice", "image_hash": "QmA", "payment": 0}, "a1"),
                await call("Register", {"username": "", "image_hash": "QmA", "payment": FEE}, "a1"),
                await call("SendGlobal", {"content": "hi"}, "a1"),
                await call("GetGroupInfo", {"group_id": 0}),
                await call("WithdrawFees", {}, "owner"),
                await call("SendGlobal", {"content": "hi"}),
            ]

        codes = self.run_async(scenario())
        self.assertEqual(codes, [
            grpc.StatusCode.FAILED_PRECONDITION,
            grpc.StatusCode.INVALID_ARGUMENT,
            grpc.StatusCode.PERMISSION_DENIED,
            grpc.StatusCode.NOT_FOUND,
            grpc.StatusCode.ALREADY_EXISTS,
            grpc.StatusCode.UNAUTHENTICATED,
        ])

    def test_malformed_fields_are_invalid_argument(self):
        async def call(method, request, identity=None):
            try:
                await getattr(self.service, method)(request, FakeContext(identity))
            except Aborted as e:
                return e.code
            return None

        async def scenario():
            await self.service.Register(
                {"username": "alice", "image_hash": "QmA", "payment": FEE}, FakeContext("a1"))
            return [
                await call("Register", {"username": 123, "image_hash": "QmB", "payment": FEE}, "b1"),
                await call("Register", {"username": "bob", "image_hash": "QmB", "payment": "5"}, "b1"),
                await call("JoinGroup", {"group_id": "abc"}, "a1"),
                await call("GetMessages", {"start": None, "count": 1}),
                await call("SendGroup", {"group_id": True, "content": "hi"}, "a1"),
                await call("SetPaused", {"paused": "false"}, "owner"),
                await call("GetUserByUsername", {"username": ["alice"]}),
            ]

        codes = self.run_async(scenario())
        self.assertEqual(codes, [grpc.StatusCode.INVALID_ARGUMENT] * 7)
        self.assertEqual(self.authority.get_all_usernames(), ["alice"])
        self.assertFalse(self.authority.is_paused)

    def test_decoded_numbers_are_accepted(self):
        async def scenario():
            request = codec.decode(codec.encode(
                {"username": "alice", "image_hash": "QmA", "payment": FEE}))
            return await self.service.Register(request, FakeContext("a1"))

        user = self.run_async(scenario())
        self.assertEqual(user["username"], "alice")
        self.assertEqual(self.authority.balance, FEE)

    def test_group_flow_and_state(self):
        async def scenario():
            for identity, name in (("a1", "alice"), ("b1", "bob")):
                await self.service.Register(
                    {"username": name, "image_hash": "Qm", "payment": FEE}, FakeContext(identity))
            created = await self.service.CreateGroup({"name": "Dev Team"}, FakeContext("a1"))
            await self.service.JoinGroup({"group_id": 0}, FakeContext("b1"))
            members = await self.service.GetGroupMembers({"group_id": 0}, FakeContext())
            await self.service.SendGroup({"group_id": 0, "content": "Welcome"}, FakeContext("a1"))
            page = await self.service.GetGroupMessages(
                {"group_id": 0, "start": 0, "count": 2}, FakeContext())
            state = await self.service.GetState({}, FakeContext())
            withdrawn = await self.service.WithdrawFees({}, FakeContext("owner"))
            return created, members, page, state, withdrawn

        created, members, page, state, withdrawn = self.run_async(scenario())
        self.assertEqual(created, {"group_id": 0})
        self.assertEqual(members, {"members": ["a1", "b1"]})
        self.assertEqual(page["messages"][0]["content"], "Welcome")
        self.assertEqual(page["messages"][1]["content"], "")
        self.assertEqual(state["message_count"], 1)
        self.assertEqual(state["balance"], 2 * FEE)
        self.assertEqual(withdrawn, {"amount": 2 * FEE})
        # responses must survive the protobuf Struct wire codec
        self.assertEqual(codec.decode(codec.encode(page)), page)

    def test_subscribe_streams_notifications(self):
        async def scenario():
            stream = self.service.Subscribe({}, FakeContext())
            async def first_note():
                return await stream.__anext__()

            first = asyncio.create_task(first_note())
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            await self.service.Register(
                {"username": "alice", "image_hash": "QmA", "payment": FEE}, FakeContext("a1"))
            note = await asyncio.wait_for(first, 1)
            await stream.aclose()
            return note

        note = self.run_async(scenario())
        self.assertEqual(note, {"event": "UserRegistered", "identity": "a1",
                                "username": "alice", "image_hash": "QmA"})
        self.assertEqual(self.service.hub.queues, {})

    def test_build_handler_routes_every_method(self):
        handler = build_handler(self.service)
        for name in UNARY_METHODS + ("Subscribe",):
            details = SimpleNamespace(method=f"/cloudfest.Registry/{name}")
            self.assertIsNotNone(handler.service(details), name)
        self.assertIsNone(handler.service(SimpleNamespace(method="/cloudfest.Registry/Nope")))

if __name__ == '__main__':
    unittest.main()
