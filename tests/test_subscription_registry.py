from __future__ import annotations

import asyncio
import json
import time
import unittest
from dataclasses import replace

from staffnotify.errors import ApiError, EmployeeNotFoundError
from staffnotify.services.employee_store import EmployeeRecord
from staffnotify.services.subscriptions import SubscriptionRegistry, normalize_subscription_list


def _subscription(endpoint: str) -> dict[str, object]:
    return {"endpoint": endpoint, "keys": {"p256dh": f"key-{endpoint}", "auth": "auth-secret"}}


class _FakeStore:
    def __init__(self, records: list[EmployeeRecord], *, read_delay: float = 0.0) -> None:
        self.records = {record.employee_id: record for record in records}
        self.read_delay = read_delay
        self.updates: list[tuple[str, dict[str, object]]] = []

    def get_employee(self, employee_id: str) -> EmployeeRecord | None:
        if self.read_delay:
            time.sleep(self.read_delay)
        return self.records.get(employee_id)

    def list_employees(self, *, exclude_role_type: str | None = None) -> list[EmployeeRecord]:
        return [item for item in self.records.values() if item.role_type != exclude_role_type]

    def update_employee_fields(self, employee_id: str, **fields: object) -> bool:
        record = self.records.get(employee_id)
        if record is None:
            return False
        self.records[employee_id] = replace(record, **fields)
        self.updates.append((employee_id, fields))
        return True


class NormalizeSubscriptionListTests(unittest.TestCase):
    def test_missing_and_blank_values_become_empty(self) -> None:
        self.assertEqual(normalize_subscription_list(None), [])
        self.assertEqual(normalize_subscription_list(""), [])
        self.assertEqual(normalize_subscription_list("   "), [])
        self.assertEqual(normalize_subscription_list([]), [])

    def test_json_text_is_decoded(self) -> None:
        stored = json.dumps([_subscription("https://push.example/a"), _subscription("https://push.example/b")])

        result = normalize_subscription_list(stored)

        self.assertEqual([item["endpoint"] for item in result], ["https://push.example/a", "https://push.example/b"])

    def test_invalid_json_text_is_treated_as_empty(self) -> None:
        with self.assertLogs("staffnotify.subscriptions", level="WARNING") as captured:
            result = normalize_subscription_list("{not json", employee_id="E1")

        self.assertEqual(result, [])
        self.assertIn("push_subscriptions_malformed", captured.output[0])

    def test_single_object_and_mapping_shapes(self) -> None:
        single = normalize_subscription_list(_subscription("https://push.example/one"))
        mapping = normalize_subscription_list(
            {"phone": _subscription("https://push.example/p"), "laptop": _subscription("https://push.example/l")}
        )

        self.assertEqual([item["endpoint"] for item in single], ["https://push.example/one"])
        self.assertEqual([item["endpoint"] for item in mapping], ["https://push.example/p", "https://push.example/l"])

    def test_duplicates_and_junk_items_are_dropped_in_order(self) -> None:
        stored = [
            _subscription("https://push.example/b"),
            "garbage",
            {"keys": {}},
            _subscription("https://push.example/a"),
            _subscription("https://push.example/b"),
            None,
        ]

        result = normalize_subscription_list(stored)

        self.assertEqual([item["endpoint"] for item in result], ["https://push.example/b", "https://push.example/a"])

    def test_unexpected_scalar_is_treated_as_empty(self) -> None:
        with self.assertLogs("staffnotify.subscriptions", level="WARNING"):
            self.assertEqual(normalize_subscription_list(42), [])


class SubscriptionRegistryTests(unittest.IsolatedAsyncioTestCase):
    async def test_register_same_endpoint_twice_stores_one_copy(self) -> None:
        store = _FakeStore([EmployeeRecord(employee_id="E1", role_type="IC")])
        registry = SubscriptionRegistry(store)  # type: ignore[arg-type]

        first = await registry.register("E1", _subscription("https://push.example/a"))
        second = await registry.register("E1", _subscription("https://push.example/a"))

        self.assertTrue(first)
        self.assertFalse(second)
        self.assertEqual(len(store.records["E1"].push_subscriptions), 1)
        self.assertEqual(len(store.updates), 1)

    async def test_register_appends_after_existing_in_order(self) -> None:
        store = _FakeStore(
            [
                EmployeeRecord(
                    employee_id="E1",
                    push_subscriptions=json.dumps([_subscription("https://push.example/old")]),
                )
            ]
        )
        registry = SubscriptionRegistry(store)  # type: ignore[arg-type]

        await registry.register("E1", _subscription("https://push.example/new"))

        endpoints = [item["endpoint"] for item in store.records["E1"].push_subscriptions]
        self.assertEqual(endpoints, ["https://push.example/old", "https://push.example/new"])

    async def test_register_over_malformed_value_starts_fresh(self) -> None:
        store = _FakeStore([EmployeeRecord(employee_id="E1", push_subscriptions="[[[")])
        registry = SubscriptionRegistry(store)  # type: ignore[arg-type]

        with self.assertLogs("staffnotify.subscriptions", level="WARNING"):
            created = await registry.register("E1", _subscription("https://push.example/a"))

        self.assertTrue(created)
        self.assertEqual(store.records["E1"].push_subscriptions, [_subscription("https://push.example/a")])

    async def test_register_unknown_employee_raises_not_found(self) -> None:
        registry = SubscriptionRegistry(_FakeStore([]))  # type: ignore[arg-type]

        with self.assertRaises(EmployeeNotFoundError) as ctx:
            await registry.register("ghost", _subscription("https://push.example/a"))

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.code, "EMPLOYEE_NOT_FOUND")

    async def test_register_without_endpoint_is_rejected(self) -> None:
        store = _FakeStore([EmployeeRecord(employee_id="E1")])
        registry = SubscriptionRegistry(store)  # type: ignore[arg-type]

        with self.assertRaises(ApiError) as ctx:
            await registry.register("E1", {"keys": {"p256dh": "x", "auth": "y"}})

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(store.updates, [])

    async def test_concurrent_registrations_for_one_employee_keep_both(self) -> None:
        store = _FakeStore([EmployeeRecord(employee_id="E1")], read_delay=0.05)
        registry = SubscriptionRegistry(store)  # type: ignore[arg-type]

        await asyncio.gather(
            registry.register("E1", _subscription("https://push.example/phone")),
            registry.register("E1", _subscription("https://push.example/laptop")),
        )

        endpoints = sorted(item["endpoint"] for item in store.records["E1"].push_subscriptions)
        self.assertEqual(endpoints, ["https://push.example/laptop", "https://push.example/phone"])

    async def test_list_unknown_employee_is_empty(self) -> None:
        registry = SubscriptionRegistry(_FakeStore([]))  # type: ignore[arg-type]

        self.assertEqual(await registry.list("ghost"), [])

    async def test_remove_by_endpoint(self) -> None:
        store = _FakeStore(
            [
                EmployeeRecord(
                    employee_id="E1",
                    push_subscriptions=[_subscription("https://push.example/a"), _subscription("https://push.example/b")],
                )
            ]
        )
        registry = SubscriptionRegistry(store)  # type: ignore[arg-type]

        removed = await registry.remove_by_endpoint("E1", "https://push.example/a")
        removed_again = await registry.remove_by_endpoint("E1", "https://push.example/a")
        removed_unknown = await registry.remove_by_endpoint("ghost", "https://push.example/b")

        self.assertTrue(removed)
        self.assertFalse(removed_again)
        self.assertFalse(removed_unknown)
        self.assertEqual(await registry.list("E1"), [_subscription("https://push.example/b")])


if __name__ == "__main__":
    unittest.main()
