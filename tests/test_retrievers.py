#!/usr/bin/env python3
"""
Tests for the retrieval layers, the relational repository and dispatch.
"""

import json
import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from enclave_bot.app.combiner import CONTENT_CLARIFY, combine
from enclave_bot.app.dispatch import Dispatcher
from enclave_bot.app.retrieval import HybridRetriever, create_whoosh_index
from enclave_bot.app.session import HistoryLog
from enclave_bot.data.database import create_tables, make_engine, make_session_factory
from enclave_bot.data.repository import Repository, resolve_answer
from enclave_bot.retrievers.action import ActionRetriever
from enclave_bot.retrievers.content import ContentRetriever
from enclave_bot.retrievers.convo import ConversationRetriever
from enclave_bot.retrievers.enclave import EnclaveReferenceRetriever, keyword_score, split_sections
from enclave_bot.schemas.session_models import ClarifyDecision, Draft, DraftKind, DraftSlots, QueryKind
from enclave_bot.utils.errors import DeliveryFailure

REFERENCE = """# Enclave Reference

Enclave is an SMS assistant for member organizations.

# Polls

Text "make a poll" to start a poll. Members reply with the option number. Enclave records each vote. Results are private.
"""

ADMIN = "+15550000001"
ALICE = "+15550000002"
BOB = "+15550000003"


def memory_repository():
    engine = make_engine("sqlite://")
    create_tables(engine)
    return Repository(make_session_factory(engine))


class FakeTransport:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, recipient, text):
        if recipient in self.fail_for:
            raise DeliveryFailure(recipient, "unreachable")
        self.sent.append((recipient, text))
        return f"SM{len(self.sent)}"


class TestEnclaveRetriever(unittest.IsolatedAsyncioTestCase):

    def test_keyword_score(self):
        self.assertAlmostEqual(keyword_score("polls and votes", "how do polls work"), 1 / 3)
        self.assertEqual(keyword_score("anything", "the"), 0.0)

    def test_split_sections(self):
        sections = split_sections(REFERENCE)
        self.assertEqual([s["title"] for s in sections], ["Enclave Reference", "Polls"])

    async def test_best_section_first(self):
        items = await EnclaveReferenceRetriever(document=REFERENCE).retrieve("how do I make a poll vote", ADMIN)
        self.assertEqual(items[0].title, "Polls")
        self.assertEqual(items[0].layer, "enclave")
        self.assertTrue(0 < items[0].score <= 1)
        self.assertNotIn("Results are private", items[0].snippet)

    async def test_no_match(self):
        self.assertEqual(await EnclaveReferenceRetriever(document=REFERENCE).retrieve("zebra", ADMIN), [])

    async def test_reads_default_document(self):
        items = await EnclaveReferenceRetriever().retrieve("how do polls work", ADMIN)
        self.assertTrue(items)


class TestConversationRetriever(unittest.IsolatedAsyncioTestCase):

    async def test_recency_scores(self):
        log = HistoryLog(prefix="test")
        await log.append(ALICE, "when is study hall", "Tuesdays at 7pm")
        entry = (await log.recent(ALICE, 1))[0]
        clock = lambda: entry.created_at + timedelta(hours=12)
        items = await ConversationRetriever(log, clock=clock).retrieve("again?", ALICE)
        self.assertEqual(len(items), 1)
        self.assertAlmostEqual(items[0].score, 0.5, places=3)
        self.assertIn("Tuesdays at 7pm", items[0].snippet)

    async def test_old_history_scores_zero(self):
        log = HistoryLog(prefix="test")
        await log.append(ALICE, "hi", "hello")
        later = lambda: datetime.now(timezone.utc) + timedelta(days=3)
        items = await ConversationRetriever(log, clock=later).retrieve("x", ALICE)
        self.assertEqual(items[0].score, 0.0)


class TestRepositoryAndActions(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.repo = memory_repository()
        for phone in (ADMIN, ALICE, BOB):
            self.repo.upsert_member(phone)

    def test_resolve_answer(self):
        options = ["Yes", "No"]
        self.assertEqual(resolve_answer(options, "1"), "Yes")
        self.assertEqual(resolve_answer(options, "no"), "No")
        self.assertEqual(resolve_answer(options, "yep"), "Yes")
        self.assertEqual(resolve_answer(options, "maybe"), "maybe")

    def test_list_recipients_excludes_sender(self):
        self.assertEqual(self.repo.list_recipients(ADMIN), [ALICE, BOB])

    def test_upsert_member_is_idempotent(self):
        self.repo.upsert_member(ALICE, name="Alice")
        self.assertEqual(len(self.repo.list_recipients()), 3)

    def test_opt_out_survives_re_registration(self):
        self.repo.set_opt_in(BOB, False)
        self.repo.upsert_member(BOB)
        self.assertEqual(self.repo.list_recipients(ADMIN), [ALICE])
        self.repo.set_opt_in(BOB, True)
        self.assertEqual(self.repo.list_recipients(ADMIN), [ALICE, BOB])

    def test_opt_out_of_unknown_number(self):
        self.repo.set_opt_in("+15550000009", False)
        self.assertNotIn("+15550000009", self.repo.list_recipients())

    def test_admin_flag_is_sticky(self):
        self.assertFalse(self.repo.is_admin(ADMIN))
        self.repo.upsert_member(ADMIN, is_admin=True)
        self.repo.upsert_member(ADMIN)
        self.assertTrue(self.repo.is_admin(ADMIN))
        self.assertFalse(self.repo.is_admin("+15550000009"))

    def test_vote_flow(self):
        poll_id = self.repo.record_poll("draft_1", ADMIN, "Coming Friday?", ["Yes", "No"], [ALICE, BOB])
        pending = self.repo.find_pending_poll(ALICE)
        self.assertEqual(pending["poll_id"], poll_id)
        self.assertEqual(pending["options"], ["Yes", "No"])
        self.assertEqual(self.repo.record_vote(poll_id, ALICE, "2"), "No")
        self.assertIsNone(self.repo.find_pending_poll(ALICE))
        self.assertIsNone(self.repo.record_vote(poll_id, ALICE, "1"))
        self.assertIsNotNone(self.repo.find_pending_poll(BOB))

    async def test_action_retriever_proposes_vote(self):
        poll_id = self.repo.record_poll("draft_1", ADMIN, "Coming Friday?", ["Yes", "No"], [ALICE])
        items = await ActionRetriever(self.repo).retrieve("1", ALICE)
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0].score, 0.8)
        self.assertEqual(items[0].proposal.kind, "record_vote")
        self.assertEqual(items[0].proposal.payload, {"poll_id": poll_id, "answer": "1"})

    async def test_action_retriever_nothing_pending(self):
        self.assertEqual(await ActionRetriever(self.repo).retrieve("1", BOB), [])


class TestDispatcher(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.repo = memory_repository()
        for phone in (ADMIN, ALICE, BOB):
            self.repo.upsert_member(phone)

    async def test_announcement_reaches_members_except_sender(self):
        transport = FakeTransport()
        draft = Draft(id="d1", kind=DraftKind.announcement, slots=DraftSlots(body="Meeting", time="21:00:00"))
        count = await Dispatcher(self.repo, transport).dispatch(ADMIN, draft)
        self.assertEqual(count, 2)
        self.assertEqual(sorted(r for r, _ in transport.sent), [ALICE, BOB])
        self.assertEqual(transport.sent[0][1], "Meeting at 9pm")

    async def test_delivery_failure_is_not_counted(self):
        transport = FakeTransport(fail_for=[BOB])
        draft = Draft(id="d1", kind=DraftKind.announcement, slots=DraftSlots(body="Meeting"))
        self.assertEqual(await Dispatcher(self.repo, transport).dispatch(ADMIN, draft), 1)

    async def test_poll_creates_pending_responses(self):
        transport = FakeTransport()
        draft = Draft(id="p1", kind=DraftKind.poll, slots=DraftSlots(question="Coming Friday?"))
        await Dispatcher(self.repo, transport).dispatch(ADMIN, draft)
        self.assertIn("1) Yes", transport.sent[0][1])
        self.assertEqual(self.repo.find_pending_poll(ALICE)["question"], "Coming Friday?")
        self.assertIsNone(self.repo.find_pending_poll(ADMIN))

    async def test_long_text_is_chunked(self):
        transport = FakeTransport()
        draft = Draft(id="d1", kind=DraftKind.announcement, slots=DraftSlots(body="x" * 250))
        await Dispatcher(self.repo, transport, max_chunk=100).dispatch(ADMIN, draft)
        self.assertEqual(len(transport.sent), 6)


class TestContentRetriever(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        chunks = [
            {"id": "c1", "text": "Study hall is every Tuesday at 7pm in the library.", "title": "Schedule"},
            {"id": "c2", "text": "Dues are fifty dollars per semester.", "title": "Dues"},
            {"id": "c3", "text": "The spring cleaning rota for the kitchen is posted on the fridge.", "title": "Chores"},
        ]
        self.chunks_path = os.path.join(self.tmp.name, "chunks.json")
        with open(self.chunks_path, "w", encoding="utf-8") as f:
            json.dump(chunks, f)
        self.whoosh_dir = os.path.join(self.tmp.name, "whoosh")
        create_whoosh_index(self.chunks_path, self.whoosh_dir)

    def tearDown(self):
        self.tmp.cleanup()

    def hybrid(self):
        return HybridRetriever(self.chunks_path, os.path.join(self.tmp.name, "missing.bin"), self.whoosh_dir)

    async def test_bm25_only_search(self):
        items = await ContentRetriever(self.hybrid(), top_k=3).retrieve("when is study hall", ALICE)
        self.assertEqual(items[0].id, "c1")
        self.assertEqual(items[0].title, "Schedule")
        self.assertAlmostEqual(items[0].score, 1.0)
        self.assertTrue(all(0 <= i.score <= 1 for i in items))

    async def test_one_word_overlap_scores_low(self):
        query = "who is the DJ for spring formal tickets parking"
        items = await ContentRetriever(self.hybrid(), top_k=3).retrieve(query, ALICE)
        self.assertEqual([i.id for i in items], ["c3"])
        self.assertAlmostEqual(items[0].score, 1 / 6)
        decision = combine(QueryKind.content_query, items, [], [], [])
        self.assertIsInstance(decision, ClarifyDecision)
        self.assertEqual(decision.message, CONTENT_CLARIFY)

    async def test_partial_overlap_is_proportional(self):
        items = await ContentRetriever(self.hybrid(), top_k=3).retrieve("study hall dues", ALICE)
        scores = {i.id: i.score for i in items}
        self.assertAlmostEqual(scores["c1"], 2 / 3)
        self.assertAlmostEqual(scores["c2"], 1 / 3)

    async def test_missing_indexes(self):
        hybrid = HybridRetriever(os.path.join(self.tmp.name, "none.json"), "nope.bin", "nope_dir")
        self.assertFalse(hybrid.available)
        self.assertEqual(await ContentRetriever(hybrid).retrieve("study hall", ALICE), [])


if __name__ == '__main__':
    unittest.main()
