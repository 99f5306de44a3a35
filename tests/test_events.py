import unittest

import events as event_store
import registrations as registration_store
from errors import EventNotFound, ValidationError

from support import INTRO_EVENT, make_event, memory_engine


class ValidateEventFieldsTests(unittest.TestCase):
    def test_normalizes_a_complete_event(self):
        values = event_store.validate_event_fields(dict(INTRO_EVENT, currency="EUR"))
        self.assertEqual(values["name"], "Intro")
        self.assertEqual(values["capacity"], 10)
        self.assertEqual(values["price_cents"], 19900)
        self.assertEqual(values["currency"], "eur")
        self.assertLess(values["start_at"], values["end_at"])

    def test_end_must_follow_start(self):
        fields = dict(INTRO_EVENT, end="2025-06-01T09:00")
        with self.assertRaises(ValidationError) as ctx:
            event_store.validate_event_fields(fields)
        self.assertIn("End time must be after start time.", ctx.exception.errors)

    def test_capacity_and_price_bounds(self):
        for field, value in (("capacity", 0), ("capacity", "many"), ("price", "-5"), ("price", "1.234")):
            with self.subTest(field=field, value=value):
                with self.assertRaises(ValidationError):
                    event_store.validate_event_fields(dict(INTRO_EVENT, **{field: value}))

    def test_collects_every_problem(self):
        with self.assertRaises(ValidationError) as ctx:
            event_store.validate_event_fields({"capacity": 0})
        errors = ctx.exception.errors
        self.assertIn("Name is required.", errors)
        self.assertIn("Capacity must be at least 1.", errors)
        self.assertIn("Price is required.", errors)

    def test_price_cents_alias(self):
        fields = dict(INTRO_EVENT)
        fields.pop("price")
        fields["priceCents"] = 0
        self.assertEqual(event_store.validate_event_fields(fields)["price_cents"], 0)

    def test_partial_update_checks_merged_dates(self):
        current = event_store.validate_event_fields(INTRO_EVENT)
        with self.assertRaises(ValidationError):
            event_store.validate_event_fields({"endAt": "2025-05-31T09:00"}, current=current)
        values = event_store.validate_event_fields({"capacity": 25}, current=current)
        self.assertEqual(values, {"capacity": 25})


class EventStoreTests(unittest.TestCase):
    def setUp(self):
        self.engine = memory_engine()

    def test_create_and_get(self):
        created = make_event(self.engine, description="Two-hour intro")
        with self.engine.connect() as conn:
            fetched = event_store.get_event(conn, created["id"])
        self.assertEqual(fetched["name"], "Intro")
        self.assertEqual(fetched["price_cents"], 19900)
        self.assertEqual(fetched["description"], "Two-hour intro")

    def test_invalid_create_writes_nothing(self):
        with self.assertRaises(ValidationError):
            make_event(self.engine, capacity=0)
        with self.engine.connect() as conn:
            self.assertEqual(event_store.list_events(conn), [])

    def test_list_is_ordered_by_start(self):
        make_event(self.engine, name="Later", start="2025-07-01T09:00", end="2025-07-01T10:00")
        make_event(self.engine, name="Sooner", start="2025-05-01T09:00", end="2025-05-01T10:00")
        with self.engine.connect() as conn:
            names = [e["name"] for e in event_store.list_events(conn)]
        self.assertEqual(names, ["Sooner", "Later"])

    def test_unknown_ids(self):
        with self.engine.connect() as conn:
            for bad in (999, "abc", None):
                with self.subTest(event_id=bad):
                    with self.assertRaises(EventNotFound):
                        event_store.get_event(conn, bad)

    def test_update_rejects_invalid_change(self):
        event = make_event(self.engine)
        with self.assertRaises(ValidationError):
            with self.engine.begin() as conn:
                event_store.update_event(conn, event["id"], {"capacity": -1})
        with self.engine.begin() as conn:
            updated = event_store.update_event(conn, event["id"], {"name": "Intro (new)", "price": "250"})
        self.assertEqual(updated["name"], "Intro (new)")
        self.assertEqual(updated["price_cents"], 25000)
        self.assertEqual(updated["capacity"], 10)

    def test_delete_archives_and_cancels_pending(self):
        event = make_event(self.engine)
        with self.engine.begin() as conn:
            pending = registration_store.insert_pending(conn, event["id"], "Ada", "ada@example.com", 19900, "usd")
            paid = registration_store.insert_pending(conn, event["id"], "Bob", "bob@example.com", 19900, "usd")
            registration_store.transition_status(conn, paid["id"], ("pending",), "paid")

        with self.engine.begin() as conn:
            result = event_store.delete_event(conn, event["id"])
        self.assertEqual(result["cancelled_registrations"], 1)

        with self.engine.connect() as conn:
            self.assertEqual(event_store.list_events(conn), [])
            archived = event_store.get_event(conn, event["id"], include_archived=True)
            self.assertIsNotNone(archived["archived_at"])
            self.assertEqual(registration_store.get_registration(conn, pending["id"])["status"], "cancelled")
            self.assertEqual(registration_store.get_registration(conn, paid["id"])["status"], "paid")

    def test_delete_leaves_rows_with_intent_for_settlement(self):
        event = make_event(self.engine)
        with self.engine.begin() as conn:
            reg = registration_store.insert_pending(conn, event["id"], "Ada", "ada@example.com", 19900, "usd")
            registration_store.set_payment_intent(conn, reg["id"], "pi_1", 19900, "usd")
            result = event_store.delete_event(conn, event["id"])
        self.assertEqual(result["cancelled_registrations"], 0)
        with self.engine.connect() as conn:
            waiting = registration_store.list_pending_with_intent(conn, event_id=event["id"])
        self.assertEqual([r["id"] for r in waiting], [reg["id"]])

    def test_serialize_event(self):
        event = make_event(self.engine)
        payload = event_store.serialize_event(event, seats_taken=3)
        self.assertEqual(payload["priceCents"], 19900)
        self.assertEqual(payload["price"], "199.00")
        self.assertEqual(payload["priceDisplay"], "$199.00")
        self.assertEqual(payload["seatsRemaining"], 7)
        self.assertEqual(payload["startAt"], "2025-06-01T09:00:00+00:00")
        self.assertFalse(payload["archived"])


if __name__ == "__main__":
    unittest.main()
