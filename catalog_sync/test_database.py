#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for the SQLite catalog store.
"""

import os
import sqlite3
import sys
import threading
import unittest
from unittest.mock import patch

from catalog_sync.core.models import DisciplineOutcome, OutcomeStatus, RunStatus, SyncRun
from catalog_sync.data import database
from catalog_sync.data.database import CatalogDatabase, get_db, reset_db
from catalog_sync.test_support import TempDatabaseMixin, make_record


class TestDisciplineStorage(TempDatabaseMixin, unittest.TestCase):
    """Discipline and class persistence"""

    def test_upsert_keeps_class_order(self):
        self.db.upsert_discipline(make_record('IME01', 'CALCULO I', [(3, 10), (1, 30), (2, 5)]))

        stored = self.db.get_discipline_by_id('IME01')

        self.assertEqual(stored.name, 'CALCULO I')
        self.assertEqual(stored.class_numbers(), [3, 1, 2])
        self.assertFalse(stored.archived)

    def test_upsert_replaces_classes(self):
        self.db.upsert_discipline(make_record('IME01', 'CALCULO I', [(1, 30), (2, 5)]))
        self.db.upsert_discipline(make_record('IME01', 'CALCULO I', [(2, 4)]))

        stored = self.db.get_discipline_by_id('IME01')

        self.assertEqual(stored.class_numbers(), [2])
        self.assertEqual(stored.classes[0].vacancies, 4)

    def test_unknown_discipline(self):
        self.assertIsNone(self.db.get_discipline_by_id('NOPE'))

    def test_listing_reads_one_snapshot(self):
        self.db.upsert_discipline(make_record('IME01', 'CALCULO I', [(1, 30)]))
        self.db.upsert_discipline(make_record('IME02', 'ALGEBRA LINEAR', [(1, 10)]))
        read_classes = CatalogDatabase._read_classes
        writers = []

        def read_while_writing(cursor, discipline_id):
            if not writers:
                # A sync rewrites IME02 while the listing is halfway through
                writer = threading.Thread(
                    target=self.db.upsert_discipline,
                    args=(make_record('IME02', 'ALGEBRA LINEAR', [(5, 3)]),)
                )
                writers.append(writer)
                writer.start()
                writer.join(0.2)
            return read_classes(cursor, discipline_id)

        with patch.object(CatalogDatabase, '_read_classes', side_effect=read_while_writing):
            listing = self.db.get_all_disciplines()
        writers[0].join(5)

        self.assertEqual(listing[1].class_numbers(), [1])
        self.assertEqual(self.db.get_discipline_by_id('IME02').class_numbers(), [5])

    def test_listing_hides_archived(self):
        self.db.upsert_discipline(make_record('IME02', 'ALGEBRA LINEAR', [(1, 10)]))
        self.db.upsert_discipline(make_record('IME01', 'CALCULO I', [(1, 30, 'linkA')]))

        self.assertTrue(self.db.archive_discipline('IME01'))
        self.assertFalse(self.db.archive_discipline('IME01'))

        self.assertEqual([d.discipline_id for d in self.db.get_all_disciplines()], ['IME02'])
        self.assertEqual(
            [d.discipline_id for d in self.db.get_all_disciplines(include_archived=True)],
            ['IME01', 'IME02']
        )
        self.assertEqual(self.db.get_active_discipline_ids(), {'IME02'})

        archived = self.db.get_discipline_by_id('IME01')
        self.assertTrue(archived.archived)
        self.assertEqual(archived.get_class('1').whatsapp_group, 'linkA')

    def test_apply_discipline_without_change_writes_nothing(self):
        self.db.upsert_discipline(make_record('IME01', 'CALCULO I', [(1, 30)]))

        existing, written = self.db.apply_discipline('IME01', lambda current: None)

        self.assertEqual(existing.class_numbers(), [1])
        self.assertIsNone(written)

    def test_apply_discipline_rolls_back_on_error(self):
        self.db.upsert_discipline(make_record('IME01', 'CALCULO I', [(1, 30)]))

        def broken_merge(current):
            # Duplicate class number violates the primary key
            return make_record('IME01', 'CALCULO II', [(1, 30), (1, 20)])

        with self.assertRaises(sqlite3.IntegrityError):
            self.db.apply_discipline('IME01', broken_merge)

        stored = self.db.get_discipline_by_id('IME01')
        self.assertEqual(stored.name, 'CALCULO I')
        self.assertEqual(stored.class_numbers(), [1])


class TestWhatsappGroup(TempDatabaseMixin, unittest.TestCase):
    """External write path for class group links"""

    def setUp(self):
        super().setUp()
        self.db.upsert_discipline(make_record('IME01', 'CALCULO I', [(1, 30), (2, 10)]))

    def test_update_link(self):
        self.assertTrue(self.db.update_whatsapp_group('IME01', '2', 'https://chat.whatsapp.com/abc'))

        stored = self.db.get_discipline_by_id('IME01')
        self.assertEqual(stored.get_class(2).whatsapp_group, 'https://chat.whatsapp.com/abc')
        self.assertIsNone(stored.get_class(1).whatsapp_group)

    def test_empty_link_clears(self):
        self.db.update_whatsapp_group('IME01', 1, 'linkA')
        self.assertTrue(self.db.update_whatsapp_group('IME01', 1, ''))
        self.assertIsNone(self.db.get_discipline_by_id('IME01').get_class(1).whatsapp_group)

    def test_unmatched_targets(self):
        self.assertFalse(self.db.update_whatsapp_group('IME01', '9', 'linkA'))
        self.assertFalse(self.db.update_whatsapp_group('NOPE', '1', 'linkA'))
        self.assertFalse(self.db.update_whatsapp_group('IME01', 'abc', 'linkA'))

    def test_class_number_rule_matches_lookup(self):
        stored = self.db.get_discipline_by_id('IME01')

        self.assertIsNone(stored.get_class('01'))
        self.assertFalse(self.db.update_whatsapp_group('IME01', '01', 'linkA'))

        self.assertIs(stored.get_class(' 2 '), stored.classes[1])
        self.assertTrue(self.db.update_whatsapp_group('IME01', ' 2 ', 'linkA'))
        self.assertEqual(self.db.get_discipline_by_id('IME01').get_class('2').whatsapp_group, 'linkA')


class TestSyncRunHistory(TempDatabaseMixin, unittest.TestCase):
    """Run summaries for operators"""

    def test_no_runs(self):
        self.assertIsNone(self.db.get_latest_sync_run())

    def test_record_and_read_latest_run(self):
        run = SyncRun()
        run.record(DisciplineOutcome('IME01', OutcomeStatus.SUCCEEDED))
        run.record(DisciplineOutcome('IME02', OutcomeStatus.FAILED, 'parse', 'Class table not found'))
        run.record(DisciplineOutcome('IME03', OutcomeStatus.UNCHANGED))
        run.archived = ['OLD99']
        run.enumeration_complete = True
        run.finish(RunStatus.PARTIAL)

        self.db.record_sync_run(run)
        latest = self.db.get_latest_sync_run()

        self.assertEqual(latest['run_id'], run.run_id)
        self.assertEqual(latest['status'], RunStatus.PARTIAL)
        self.assertTrue(latest['enumeration_complete'])
        self.assertEqual(
            (latest['succeeded'], latest['unchanged'], latest['failed'], latest['skipped']),
            (1, 1, 1, 0)
        )
        self.assertEqual(latest['archived'], ['OLD99'])
        self.assertEqual(latest['failures'], [
            {'discipline_id': 'IME02', 'kind': 'parse', 'message': 'Class table not found'}
        ])

    def test_recording_twice_updates_run(self):
        run = SyncRun()
        self.db.record_sync_run(run)
        run.finish(RunStatus.FAILED, 'Authentication failed')
        self.db.record_sync_run(run)

        latest = self.db.get_latest_sync_run()
        self.assertEqual(latest['status'], RunStatus.FAILED)
        self.assertEqual(latest['error'], 'Authentication failed')


class TestSingleton(TempDatabaseMixin, unittest.TestCase):

    def tearDown(self):
        reset_db()
        super().tearDown()

    def test_get_db_returns_same_instance(self):
        reset_db()
        path = os.path.join(self.test_dir, 'shared.db')

        first = get_db(path)
        second = get_db()

        self.assertIs(first, second)
        self.assertEqual(first.sqlite_path, path)

        reset_db()
        self.assertIsNone(database._instance)


if __name__ == '__main__':
    result = unittest.main(exit=False, verbosity=2).result
    sys.exit(0 if result.wasSuccessful() else 1)
