#!/usr/bin/env python3
"""
Tests for draft preview, diff and confirmation rendering.
"""

import unittest

from enclave_bot.dialog.preview import format_time, render_confirmation, render_diff, render_preview
from enclave_bot.schemas.session_models import Draft, DraftConstraints, DraftKind, DraftSlots


def announcement(verbatim=None, **slots):
    constraints = DraftConstraints(verbatim_only=bool(verbatim), must_not_change=["body"] if verbatim else [])
    return Draft(id="d1", kind=DraftKind.announcement, verbatim_text=verbatim,
                 slots=DraftSlots(**slots), constraints=constraints)


class TestRenderPreview(unittest.TestCase):

    def test_verbatim_is_returned_unmodified(self):
        draft = announcement(verbatim="football tomorrow at 6am im fields", body="football tomorrow at 6am im fields")
        self.assertEqual(render_preview(draft), "football tomorrow at 6am im fields")

    def test_verbatim_keeps_odd_spacing_and_punctuation(self):
        text = "  dues due fri!!  no excuses ,ok"
        self.assertEqual(render_preview(announcement(verbatim=text, body=text)), text)

    def test_slot_order(self):
        draft = announcement(body="Chapter meeting", time="21:00:00", location="SAC", audience="new members")
        self.assertEqual(render_preview(draft), "Chapter meeting at 9pm at SAC for new members")

    def test_title_and_date(self):
        draft = announcement(title="Formal", body="Dress up", time="19:30:00", date="Saturday")
        self.assertEqual(render_preview(draft), "Formal Dress up at 7:30pm on Saturday")

    def test_empty_announcement(self):
        self.assertEqual(render_preview(announcement()), "[empty draft]")

    def test_poll_defaults(self):
        draft = Draft(id="p1", kind=DraftKind.poll, slots=DraftSlots(question="Coming to the retreat?"))
        self.assertEqual(render_preview(draft), "Coming to the retreat?\n\n1) Yes\n2) No")

    def test_poll_without_question(self):
        draft = Draft(id="p1", kind=DraftKind.poll, slots=DraftSlots(options=["Fri", "Sat"]))
        self.assertEqual(render_preview(draft), "[no question set]\n\n1) Fri\n2) Sat")

    def test_format_time(self):
        self.assertEqual(format_time("21:00:00"), "9pm")
        self.assertEqual(format_time("21:30:00"), "9:30pm")
        self.assertEqual(format_time("00:00:00"), "12am")
        self.assertEqual(format_time("12:15:00"), "12:15pm")
        self.assertEqual(format_time("tonight"), "tonight")


class TestRenderDiff(unittest.TestCase):

    def test_only_changed_fields_are_narrated(self):
        old = announcement(body="Meeting", time="20:00:00", location="SAC")
        new = announcement(body="Meeting", time="21:00:00", location="SAC")
        diff = render_diff(old, new)
        self.assertEqual(diff, "Changed the time to 9pm.")
        self.assertNotIn("SAC", diff)
        self.assertNotIn("Meeting", diff)

    def test_no_changes(self):
        draft = announcement(body="Meeting")
        self.assertEqual(render_diff(draft, draft.model_copy()), "No changes.")

    def test_removed_field(self):
        self.assertEqual(render_diff(announcement(location="SAC"), announcement()), "Removed the location.")

    def test_verbatim_switch_and_locks(self):
        old = announcement(body="Meeting")
        new = announcement(verbatim="Meeting at 8", body="Meeting at 8")
        diff = render_diff(old, new)
        self.assertIn('Changed the body to "Meeting at 8".', diff)
        self.assertIn("Using your exact wording.", diff)
        self.assertIn("Locked: body.", diff)


class TestRenderConfirmation(unittest.TestCase):

    def test_verbatim_note(self):
        text = render_confirmation(announcement(verbatim="Dues Friday", body="Dues Friday"))
        self.assertTrue(text.startswith("Ready to send (verbatim):\n\nDues Friday\n\n"))

    def test_plain(self):
        text = render_confirmation(announcement(body="Meeting"))
        self.assertTrue(text.startswith("Ready to send:\n\nMeeting"))
        self.assertIn('"send it"', text)


if __name__ == '__main__':
    unittest.main()
