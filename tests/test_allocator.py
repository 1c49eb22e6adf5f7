import unittest
from concurrent.futures import ThreadPoolExecutor

from allocate.allocator import DailyAllocator, group_by_issue, is_meeting_title, main_project
from allocate.normalizer import normalize_day
from allocate.weights import LinesChangedWeight
from correlate.linker import extract_issue_keys
from correlate.models import HIGH, LOW, MEDIUM, MatchResult
from errors import LookupFailure
from normalize.models import CALENDAR, EMAIL, Commit, EvidenceSignal

TUESDAY = '2025-03-04'
MONDAY = '2025-03-03'
NO_MEETINGS = {'daily_sync_minutes': 0, 'first_day_meeting_minutes': 0}


def commit(message, lines, day=TUESDAY, project='repo'):
    return Commit(f"h{abs(hash((message, lines))) % 10**8}", day, message, extract_issue_keys(message), project, lines)


class FakeTracker:
    def __init__(self, estimates=None, meeting_issues=None, fail_estimates=(), fail_meetings=()):
        self.estimates = estimates or {}
        self.meeting_issues = meeting_issues or {}
        self.fail_estimates = set(fail_estimates)
        self.fail_meetings = set(fail_meetings)
        self.meeting_lookups = []

    def get_issue_details(self, key):
        if key in self.fail_estimates:
            raise LookupFailure(f"Issue details for {key} unavailable")
        return {'story_points': self.estimates.get(key), 'summary': ''}

    def find_recurring_meeting_issue(self, project_key):
        self.meeting_lookups.append(project_key)
        if project_key in self.fail_meetings:
            raise LookupFailure('search failed')
        return self.meeting_issues.get(project_key)


class TestHelpers(unittest.TestCase):
    def test_group_by_issue_multi_key_commit(self):
        groups = group_by_issue([commit('ABC-1 ABC-2 shared fix', 20), commit('ABC-1 follow-up', 20), commit('no key', 50)])
        self.assertEqual([g.issue_key for g in groups], ['ABC-1', 'ABC-2'])
        self.assertEqual([g.lines_changed for g in groups], [40, 20])

    def test_main_project_first_wins_ties(self):
        groups = group_by_issue([commit('XYZ-1 a', 30), commit('ABC-1 b', 30)])
        self.assertEqual(main_project(groups), 'XYZ')
        groups = group_by_issue([commit('XYZ-1 a', 30), commit('ABC-1 b', 20), commit('ABC-2 c', 20)])
        self.assertEqual(main_project(groups), 'ABC')

    def test_meeting_title(self):
        keywords = ['daily', 'standup', 'retro']
        self.assertTrue(is_meeting_title('Team DAILY', keywords))
        self.assertFalse(is_meeting_title('Customer demo', keywords))


class TestDailyAllocator(unittest.TestCase):
    def test_proportional_split_then_normalized(self):
        allocator = DailyAllocator(FakeTracker(), tuning=NO_MEETINGS)
        day, warnings = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 add export', 40), commit('ABC-2 fix typo', 10)])
        # 480 * 0.8 / 60 = 6.4 -> 6.5, 480 * 0.2 / 60 = 1.6 -> 1.5
        self.assertEqual([(e.issue_key, e.hours) for e in day.entries], [('ABC-1', 6.5), ('ABC-2', 1.5)])
        normalize_day(day)
        self.assertAlmostEqual(day.total_hours, 8.0, delta=1e-9)
        self.assertEqual(day.entries[0].description, 'Add export')
        self.assertEqual(warnings, [])

    def test_zero_commits_is_no_activity(self):
        signal = EvidenceSignal(EMAIL, TUESDAY, 'ABC-1 question', is_sent=True)
        allocator = DailyAllocator(FakeTracker(), tuning=NO_MEETINGS)
        day, warnings = allocator.allocate(TUESDAY, 'Tuesday', [], [MatchResult(signal, 'ABC-1', HIGH, 'explicit')])
        self.assertEqual(day.entries, [])
        self.assertTrue(day.no_activity)
        self.assertEqual(day.total_hours, 0)
        self.assertEqual(warnings, ['No commits found for Tuesday (2025-03-04)'])

    def test_story_points_multiply_weight(self):
        tracker = FakeTracker(estimates={'ABC-1': 3})
        with ThreadPoolExecutor(max_workers=2) as executor:
            allocator = DailyAllocator(tracker, tuning=NO_MEETINGS, executor=executor)
            day, _ = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 10), commit('ABC-2 b', 30)])
        self.assertEqual([e.hours for e in day.entries], [4.0, 4.0])

    def test_estimate_lookup_failure_falls_back_to_one(self):
        tracker = FakeTracker(estimates={'ABC-2': 5}, fail_estimates={'ABC-1'})
        allocator = DailyAllocator(tracker, tuning=NO_MEETINGS)
        day, warnings = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 50), commit('ABC-2 b', 10)])
        self.assertEqual([e.hours for e in day.entries], [4.0, 4.0])
        self.assertEqual(len(warnings), 1)
        self.assertIn('ABC-1', warnings[0])
        self.assertIn('multiplier 1', warnings[0])

    def test_strategy_without_estimates_skips_lookups(self):
        tracker = FakeTracker(fail_estimates={'ABC-1'})
        allocator = DailyAllocator(tracker, strategy=LinesChangedWeight(), tuning=NO_MEETINGS)
        _, warnings = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 50)])
        self.assertEqual(warnings, [])

    def test_daily_sync_on_main_project(self):
        tracker = FakeTracker(meeting_issues={'XYZ': 'XYZ-100'})
        allocator = DailyAllocator(tracker)
        day, warnings = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 10), commit('XYZ-1 b', 50)])
        sync = day.entry_for('XYZ-100')
        self.assertIsNotNone(sync)
        self.assertTrue(sync.is_fixed_meeting)
        self.assertEqual((sync.hours, sync.description), (0.25, 'Daily standup'))
        self.assertEqual(allocator.available_minutes(TUESDAY), 465)
        self.assertEqual(warnings, [])
        normalize_day(day)
        self.assertEqual(day.entry_for('XYZ-100').hours, 0.25)
        self.assertAlmostEqual(day.total_hours, 8.0, delta=1e-9)

    def test_meeting_issue_resolved_once_per_project(self):
        tracker = FakeTracker(meeting_issues={'XYZ': 'XYZ-100'})
        allocator = DailyAllocator(tracker)
        allocator.allocate(MONDAY, 'Monday', [commit('XYZ-1 a', 10, day=MONDAY)])
        allocator.allocate(TUESDAY, 'Tuesday', [commit('XYZ-1 a', 10)])
        self.assertEqual(tracker.meeting_lookups, ['XYZ'])

    def test_first_day_meeting_on_monday_only(self):
        allocator = DailyAllocator(FakeTracker(), tuning={'daily_sync_minutes': 0}, first_day_meeting_issue='TEAM-5')
        monday, _ = allocator.allocate(MONDAY, 'Monday', [commit('ABC-1 a', 10, day=MONDAY)])
        tuesday, _ = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 10)])
        weekly = monday.entry_for('TEAM-5')
        self.assertEqual((weekly.hours, weekly.description, weekly.is_fixed_meeting), (0.25, 'Weekly sync', True))
        self.assertIsNone(tuesday.entry_for('TEAM-5'))
        self.assertEqual(allocator.available_minutes(MONDAY), 465)

    def test_meeting_lookup_failure_is_a_warning(self):
        allocator = DailyAllocator(FakeTracker(fail_meetings={'ABC'}))
        day, warnings = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 10)])
        self.assertEqual([e.issue_key for e in day.entries], ['ABC-1'])
        self.assertTrue(any('Meeting issue lookup failed for project ABC' in w for w in warnings))

    def test_email_match_adds_quarter_hour_once(self):
        mail = EvidenceSignal(EMAIL, TUESDAY, 'RE: Invoice layout - next steps', is_sent=True)
        known = EvidenceSignal(EMAIL, TUESDAY, 'ABC-1 status', is_sent=True)
        matches = [MatchResult(mail, 'CRM-7', MEDIUM, 'Similarity: 60%'), MatchResult(known, 'ABC-1', HIGH, 'explicit')]
        allocator = DailyAllocator(FakeTracker(), tuning=NO_MEETINGS)
        day, _ = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 10)], matches)
        follow_up = day.entry_for('CRM-7')
        self.assertEqual((follow_up.hours, follow_up.description), (0.25, 'Client follow-up - Invoice layout'))
        self.assertEqual(day.entry_for('ABC-1').hours, 8.0)
        self.assertEqual(len(day.entries), 2)

    def test_low_confidence_matches_are_ignored(self):
        mail = EvidenceSignal(EMAIL, TUESDAY, 'Lunch', is_sent=True)
        allocator = DailyAllocator(FakeTracker(), tuning=NO_MEETINGS)
        day, warnings = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 10)], [MatchResult(mail, None, LOW, 'No candidate')])
        self.assertEqual([e.issue_key for e in day.entries], ['ABC-1'])
        self.assertEqual(warnings, [])

    def test_calendar_meetings_merge_into_meeting_issue(self):
        tracker = FakeTracker(meeting_issues={'ABC': 'ABC-100'})
        standup = EvidenceSignal(CALENDAR, TUESDAY, 'Daily standup', duration_minutes=15)
        planning = EvidenceSignal(CALENDAR, TUESDAY, 'Sprint planning', duration_minutes=60)
        allocator = DailyAllocator(tracker)
        day, _ = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 10)], calendar_events=[standup, planning])
        meeting = day.entry_for('ABC-100')
        self.assertEqual(meeting.hours, 1.25)
        self.assertEqual(meeting.description, 'Daily standup + Sprint planning')
        self.assertTrue(meeting.is_fixed_meeting)

    def test_calendar_meeting_without_issue_is_skipped(self):
        retro = EvidenceSignal(CALENDAR, TUESDAY, 'Retro', duration_minutes=45)
        allocator = DailyAllocator(FakeTracker(), tuning=NO_MEETINGS)
        day, warnings = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 a', 10)], calendar_events=[retro])
        self.assertEqual([e.issue_key for e in day.entries], ['ABC-1'])
        self.assertTrue(any("Skipped meeting 'Retro'" in w for w in warnings))

    def test_calendar_match_extends_or_creates_entry(self):
        demo = EvidenceSignal(CALENDAR, TUESDAY, 'Client demo', duration_minutes=30)
        workshop = EvidenceSignal(CALENDAR, TUESDAY, 'Design workshop', duration_minutes=90)
        matches = [MatchResult(demo, 'ABC-1', MEDIUM, 'Similarity'), MatchResult(workshop, 'UX-3', HIGH, 'Similarity')]
        allocator = DailyAllocator(FakeTracker(), tuning=NO_MEETINGS)
        day, _ = allocator.allocate(TUESDAY, 'Tuesday', [commit('ABC-1 add export', 10)], matches, [demo, workshop])
        self.assertEqual(day.entry_for('ABC-1').hours, 8.5)
        self.assertEqual(day.entry_for('ABC-1').description, 'Add export + Meeting: Client demo')
        ux = day.entry_for('UX-3')
        self.assertEqual((ux.hours, ux.description, ux.is_fixed_meeting), (1.5, 'Meeting - Design workshop', False))
        normalize_day(day)
        self.assertAlmostEqual(day.total_hours, 8.0, delta=1e-9)

    def test_keyless_commits_only_mark_activity(self):
        allocator = DailyAllocator(FakeTracker(), tuning=NO_MEETINGS)
        day, warnings = allocator.allocate(TUESDAY, 'Tuesday', [commit('cleanup', 100)])
        self.assertEqual(day.entries, [])
        self.assertFalse(day.no_activity)
        self.assertTrue(any('name no issue key' in w for w in warnings))


if __name__ == '__main__':
    unittest.main()
