import threading
import unittest
from cloudfest.server.authority import ChatAuthority
from cloudfest.server.errors import (AuthorizationError, ConflictError, NotFoundError,
                                     ReentrancyError, ValidationError)
from cloudfest.server.models import UserRegistered

FEE = 10

class TestAdminControl(unittest.TestCase):
    def setUp(self):
        self.authority = ChatAuthority("owner", registration_fee=FEE)

    def test_owner_only(self):
        calls = [
            lambda: self.authority.set_registration_fee("a1", 1),
            lambda: self.authority.set_paused("a1", True),
            lambda: self.authority.deactivate_user("a1", "a1"),
            lambda: self.authority.deactivate_group("a1", 0),
            lambda: self.authority.withdraw_fees("a1"),
        ]
        for call in calls:
            with self.assertRaises(AuthorizationError):
                call()

    def test_set_fee(self):
        self.authority.set_registration_fee("owner", 25)
        self.assertEqual(self.authority.registration_fee, 25)
        with self.assertRaises(ValidationError):
            self.authority.set_registration_fee("owner", -1)
        self.assertEqual(self.authority.registration_fee, 25)

    def test_pause_flag_is_not_enforced(self):
        self.authority.set_paused("owner", True)
        self.assertTrue(self.authority.is_paused)
        # Stored and toggled only; operations keep working while paused
        self.authority.register("a1", "alice", "QmA", payment=FEE)
        self.authority.send_global("a1", "still open")
        self.authority.set_paused("owner", False)
        self.assertFalse(self.authority.is_paused)

    def test_deactivate_unknown(self):
        with self.assertRaises(NotFoundError):
            self.authority.deactivate_user("owner", "ghost")
        with self.assertRaises(NotFoundError):
            self.authority.deactivate_group("owner", 0)

    def test_withdraw(self):
        with self.assertRaises(ConflictError):
            self.authority.withdraw_fees("owner")
        self.authority.register("a1", "alice", "QmA", payment=FEE)
        self.assertEqual(self.authority.withdraw_fees("owner"), FEE)
        self.assertEqual(self.authority.balance, 0)
        self.assertEqual(self.authority.treasury.payouts, {"owner": FEE})
        with self.assertRaises(ConflictError):
            self.authority.withdraw_fees("owner")

    def test_deactivated_group_keeps_record(self):
        self.authority.register("a1", "alice", "QmA", payment=FEE)
        self.authority.create_group("a1", "Dev Team")
        self.authority.deactivate_group("owner", 0)
        self.assertEqual(self.authority.get_group_info(0).name, "Dev Team")
        self.assertEqual(self.authority.get_group_members(0), ["a1"])

class TestScenario(unittest.TestCase):
    def test_alice_and_bob(self):
        authority = ChatAuthority("owner", registration_fee=FEE)
        authority.register("alice-id", "alice", "QmAlice", payment=FEE)
        authority.register("bob-id", "bob", "QmBob", payment=FEE)

        msg = authority.send_global("alice-id", "Hello everyone!")
        self.assertEqual((msg.id, msg.is_private, msg.group_id), (0, False, 0))

        group_id = authority.create_group("alice-id", "Dev Team")
        self.assertEqual(group_id, 0)
        self.assertEqual(authority.get_group_info(group_id).member_count, 1)
        authority.join_group("bob-id", group_id)
        self.assertEqual(authority.get_group_info(group_id).member_count, 2)
        authority.leave_group("bob-id", group_id)
        self.assertEqual(authority.get_group_info(group_id).member_count, 1)
        self.assertFalse(authority.is_group_member(group_id, "bob-id"))

        welcome = authority.send_group("alice-id", group_id, "Welcome")
        self.assertEqual(welcome.group_id, 0)
        self.assertEqual(authority.get_messages(1, 1)[0].content, "Welcome")

        self.assertEqual(authority.get_ens_name("alice-id"), "alice.cloudfest")
        self.assertEqual(authority.withdraw_fees("owner"), 2 * FEE)
        self.assertEqual(authority.balance, 0)

class TestSerialization(unittest.TestCase):
    def setUp(self):
        self.authority = ChatAuthority("owner", registration_fee=FEE)

    def test_nested_mutation_during_registration_is_rejected(self):
        self.authority.register("b1", "bob", "QmB", payment=FEE)
        seen = []

        def hook(identity, amount):
            seen.append(self.authority.get_all_usernames())
            self.authority.send_global("b1", "sneaky")

        with self.assertRaises(ReentrancyError):
            self.authority.register("a1", "alice", "QmA", payment=FEE, on_payment=hook)
        self.assertEqual(seen, [["bob"]])
        # nothing applied, guard released
        self.assertEqual(self.authority.get_all_usernames(), ["bob"])
        self.assertEqual(self.authority.message_count, 0)
        self.assertEqual(self.authority.balance, FEE)
        self.authority.register("a1", "alice", "QmA", payment=FEE)
        self.assertEqual(self.authority.get_all_usernames(), ["bob", "alice"])

    def test_reentrancy_error_is_a_conflict(self):
        self.assertTrue(issubclass(ReentrancyError, ConflictError))

    def test_hook_that_swallows_rejection(self):
        rejected = []

        def hook(identity, amount):
            try:
                self.authority.register("x1", "mallory", "QmX", payment=FEE)
            except ReentrancyError as e:
                rejected.append(e)

        user = self.authority.register("a1", "alice", "QmA", payment=FEE, on_payment=hook)
        self.assertEqual(user.username, "alice")
        self.assertEqual(len(rejected), 1)
        self.assertEqual(self.authority.get_all_usernames(), ["alice"])

    def test_failed_registration_skips_hook(self):
        calls = []
        with self.assertRaises(ValidationError):
            self.authority.register("a1", "", "QmA", payment=FEE,
                                    on_payment=lambda i, a: calls.append(i))
        self.assertEqual(calls, [])

    def test_listeners_see_committed_notifications(self):
        received = []
        self.authority.subscribe(received.append)
        self.authority.register("a1", "alice", "QmA", payment=FEE)
        self.authority.unsubscribe(received.append)
        self.authority.register("b1", "bob", "QmB", payment=FEE)
        self.assertEqual(received, [UserRegistered("a1", "alice", "QmA")])

    def test_listener_cannot_register_during_user_registered(self):
        rejected = []
        order = []

        def nested(note):
            try:
                self.authority.register("m1", "mallory", "QmM", payment=FEE)
            except ReentrancyError as e:
                rejected.append(e)

        self.authority.subscribe(nested)
        self.authority.subscribe(lambda note: order.append(note.username))
        self.authority.register("a1", "alice", "QmA", payment=FEE)

        self.assertEqual(len(rejected), 1)
        self.assertEqual(order, ["alice"])
        self.assertEqual(self.authority.get_all_usernames(), ["alice"])
        self.assertEqual(self.authority.balance, FEE)
        # guard is released once delivery finishes
        self.authority.unsubscribe(nested)
        self.authority.register("m1", "mallory", "QmM", payment=FEE)
        self.assertEqual(order, ["alice", "mallory"])

    def test_listener_cannot_mutate_during_any_notification(self):
        self.authority.register("a1", "alice", "QmA", payment=FEE)
        rejected = []

        def nested(note):
            try:
                self.authority.send_global("a1", "echo")
            except ReentrancyError as e:
                rejected.append(e)

        self.authority.subscribe(nested)
        self.authority.create_group("a1", "Dev Team")
        self.assertEqual(len(rejected), 1)
        self.assertEqual(self.authority.message_count, 0)

    def test_failing_listener_does_not_undo_mutation(self):
        def broken(note):
            raise RuntimeError("indexer down")
        self.authority.subscribe(broken)
        self.authority.register("a1", "alice", "QmA", payment=FEE)
        self.assertEqual(self.authority.get_all_usernames(), ["alice"])

    def test_concurrent_sends_get_distinct_ids(self):
        for i in range(4):
            self.authority.register(f"u{i}", f"user{i}", "Qm", payment=FEE)

        def worker(identity):
            for n in range(50):
                self.authority.send_global(identity, f"{identity}-{n}")

        threads = [threading.Thread(target=worker, args=(f"u{i}",)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        messages = self.authority.get_messages(0, 200)
        self.assertEqual([m.id for m in messages], list(range(200)))

if __name__ == '__main__':
    unittest.main()
