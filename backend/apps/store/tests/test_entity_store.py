from unittest import mock

from django.db import DatabaseError
from django.test import TestCase

from apps.projects.models import IdCounter
from apps.store import entity_store
from apps.store.entity_store import AlreadyExists
from core.exceptions import StorageError


class EntityStoreTests(TestCase):
    def test_read_missing_returns_none(self):
        self.assertIsNone(entity_store.read(IdCounter, "T:request"))

    def test_create_only_then_read(self):
        entity_store.create_only(IdCounter, prefix="T:request", next_sequence=4)
        counter = entity_store.read(IdCounter, "T:request")
        self.assertEqual(counter.next_sequence, 4)

    def test_create_only_rejects_existing_key(self):
        entity_store.create_only(IdCounter, prefix="T:request", next_sequence=1)
        with self.assertRaises(AlreadyExists) as ctx:
            entity_store.create_only(IdCounter, prefix="T:request", next_sequence=9)
        self.assertEqual(ctx.exception.code, "STORAGE_ERROR")
        # The failed insert does not poison the surrounding transaction.
        self.assertEqual(IdCounter.objects.get(prefix="T:request").next_sequence, 1)

    def test_write_updates_only_given_fields(self):
        counter = entity_store.create_only(IdCounter, prefix="Q:legacy")
        entity_store.write(counter, next_sequence=7)
        self.assertEqual(IdCounter.objects.get(prefix="Q:legacy").next_sequence, 7)

    def test_advance_if_lower_never_moves_backwards(self):
        entity_store.create_only(IdCounter, prefix="T:request", next_sequence=5)
        qs = IdCounter.objects.filter(prefix="T:request")
        self.assertEqual(entity_store.advance_if_lower(qs, "next_sequence", 3), 0)
        self.assertEqual(entity_store.advance_if_lower(qs, "next_sequence", 8), 1)
        self.assertEqual(IdCounter.objects.get(prefix="T:request").next_sequence, 8)

    def test_read_failure_raises_storage_error(self):
        with mock.patch.object(
            IdCounter.objects, "all", side_effect=DatabaseError("unavailable")
        ):
            with self.assertRaises(StorageError):
                entity_store.read(IdCounter, "T:request")
