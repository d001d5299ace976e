#!/usr/bin/env python3
"""
Tests for the retrieval combiner's calibration and dispatch.
"""

import unittest

from enclave_bot.app.combiner import calibrate, combine
from enclave_bot.schemas.session_models import (
    ActionProposal,
    AnswerDecision,
    ClarifyDecision,
    ExecuteActionDecision,
    QueryKind,
    RetrievalItem,
)


def item(layer, score, snippet="snippet", title=None, proposal=None):
    return RetrievalItem(layer=layer, id=f"{layer}-{score}", title=title, snippet=snippet, score=score,
                         proposal=proposal)


class TestCalibration(unittest.TestCase):

    def test_agreement_bonus(self):
        score = calibrate([item("content", 0.8)], [item("enclave", 0.5)])
        self.assertAlmostEqual(score, 0.95)
        self.assertLessEqual(score, 1.0)

    def test_no_bonus_below_thresholds(self):
        self.assertAlmostEqual(calibrate([item("content", 0.6)], [item("enclave", 0.5)]), 0.6)
        self.assertAlmostEqual(calibrate([item("content", 0.9)], [item("enclave", 0.4)]), 0.9)

    def test_clamped(self):
        self.assertEqual(calibrate([item("content", 0.95)], [item("enclave", 0.9)]), 1.0)

    def test_empty(self):
        self.assertEqual(calibrate([], []), 0.0)


class TestCombine(unittest.TestCase):

    def test_content_answer_with_bonus(self):
        decision = combine(QueryKind.content_query, [item("content", 0.8, "Study hall is Tuesdays at 7pm.", "Schedule")],
                           [], [item("enclave", 0.5)], [])
        self.assertIsInstance(decision, AnswerDecision)
        self.assertEqual(decision.message, "Study hall is Tuesdays at 7pm.")
        self.assertAlmostEqual(decision.confidence, 0.95)
        self.assertEqual(decision.sources[0].title, "Schedule")

    def test_content_query_without_content_clarifies(self):
        decision = combine(QueryKind.content_query, [], [], [item("enclave", 0.9)], [])
        self.assertIsInstance(decision, ClarifyDecision)
        self.assertEqual(decision.confidence, 0.2)

    def test_low_content_score_clarifies(self):
        decision = combine(QueryKind.content_query, [item("content", 0.2)], [], [], [])
        self.assertIsInstance(decision, ClarifyDecision)
        self.assertAlmostEqual(decision.confidence, 0.2)

    def test_uses_best_content_item(self):
        content = [item("content", 0.4, "worse"), item("content", 0.7, "better")]
        self.assertEqual(combine(QueryKind.content_query, content, [], [], []).message, "better")

    def test_enclave_help(self):
        decision = combine(QueryKind.enclave_help, [], [], [item("enclave", 0.67, "Text make a poll.", "Polls")], [])
        self.assertIsInstance(decision, AnswerDecision)
        self.assertEqual(decision.sources[0].layer, "enclave")

    def test_enclave_help_low_score(self):
        decision = combine(QueryKind.enclave_help, [], [], [item("enclave", 0.25)], [])
        self.assertIsInstance(decision, ClarifyDecision)

    def test_action_request(self):
        proposal = ActionProposal(kind="record_vote", preview_text="Record poll vote", payload={"poll_id": 1})
        decision = combine(QueryKind.action_request, [], [], [], [item("action", 0.8, proposal=proposal)])
        self.assertIsInstance(decision, ExecuteActionDecision)
        self.assertEqual(decision.action.payload, {"poll_id": 1})
        self.assertEqual(decision.confidence, 0.7)

    def test_action_request_without_proposal(self):
        decision = combine(QueryKind.action_request, [], [], [], [])
        self.assertIsInstance(decision, ClarifyDecision)
        self.assertEqual(decision.confidence, 0.3)

    def test_canned_answers_ignore_retrieval(self):
        strong = [item("content", 0.99)]
        for kind in (QueryKind.smalltalk, QueryKind.abusive):
            with self.subTest(kind=kind):
                decision = combine(kind, strong, [], [], [])
                self.assertIsInstance(decision, AnswerDecision)
                self.assertNotEqual(decision.message, "snippet")
                self.assertEqual(decision.sources, [])


if __name__ == '__main__':
    unittest.main()
