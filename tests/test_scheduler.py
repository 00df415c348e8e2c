import unittest
from datetime import datetime
from unittest import mock

from aggregator.core.schedule import DailyRule
from aggregator.errors import RunAlreadyInProgress
from aggregator.pipeline.coordinator import AlreadyRunning, RunAccepted
from aggregator.pipeline.scheduler import Scheduler
from aggregator.pipeline.stats import Trigger


class SchedulerTests(unittest.TestCase):
    def test_next_events_are_ordered(self):
        scheduler = Scheduler(mock.Mock(), DailyRule(2, 0), DailyRule(3, 0))
        events = scheduler.next_events(datetime(2025, 1, 1, 2, 30))
        self.assertEqual(events, [(datetime(2025, 1, 1, 3, 0), "cleanup"), (datetime(2025, 1, 2, 2, 0), "refresh")])

    def test_refresh_fires_scheduled_run(self):
        coordinator = mock.Mock()
        coordinator.trigger_run.return_value = RunAccepted("abc")
        Scheduler(coordinator, DailyRule(2, 0)).fire("refresh")
        coordinator.trigger_run.assert_called_once_with(Trigger.SCHEDULED)

    def test_rejections_are_not_raised(self):
        coordinator = mock.Mock()
        coordinator.trigger_run.return_value = AlreadyRunning("busy")
        coordinator.trigger_cleanup.side_effect = RunAlreadyInProgress("busy")
        scheduler = Scheduler(coordinator, DailyRule(2, 0), DailyRule(3, 0))
        scheduler.fire("refresh")
        scheduler.fire("cleanup")
        coordinator.trigger_cleanup.assert_called_once_with()

    def test_start_and_stop(self):
        scheduler = Scheduler(mock.Mock(), DailyRule(2, 0), clock=lambda: datetime(2025, 1, 1, 0, 0))
        scheduler.start()
        self.assertTrue(scheduler.is_alive())
        scheduler.stop()
        self.assertFalse(scheduler.is_alive())

    def test_no_rules_does_not_start(self):
        scheduler = Scheduler(mock.Mock(), None)
        scheduler.start()
        self.assertFalse(scheduler.is_alive())


if __name__ == "__main__":
    unittest.main()
