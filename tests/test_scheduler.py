import unittest
from unittest.mock import MagicMock

from apscheduler.triggers.cron import CronTrigger

from newspipe.config import ScheduleConfig
from newspipe.jobs import TriggerResult
from newspipe.scheduler import build_scheduler, register_schedules


class SchedulerTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.schedule = ScheduleConfig()
        self.controller = MagicMock()
        self.scheduler = build_scheduler(self.schedule)
        register_schedules(self.scheduler, self.controller, self.schedule)

    async def test_registers_one_cron_job_per_kind(self) -> None:
        jobs = {job.id: job for job in self.scheduler.get_jobs()}

        self.assertEqual(set(jobs), {"scrape-cron", "analysis-cron"})
        for job in jobs.values():
            self.assertIsInstance(job.trigger, CronTrigger)
            self.assertEqual(str(job.trigger.timezone), "Asia/Seoul")
        self.assertIn("hour='9'", str(jobs["scrape-cron"].trigger))
        self.assertIn("hour='10'", str(jobs["analysis-cron"].trigger))

    async def test_scheduled_jobs_only_trigger_the_controller(self) -> None:
        self.controller.trigger_scrape.return_value = TriggerResult(started=True)
        self.controller.trigger_analysis.return_value = TriggerResult(started=True)
        jobs = {job.id: job for job in self.scheduler.get_jobs()}

        await jobs["scrape-cron"].func()
        await jobs["analysis-cron"].func()

        self.controller.trigger_scrape.assert_called_once_with("cron")
        self.controller.trigger_analysis.assert_called_once_with("cron")

    async def test_skipped_trigger_is_logged(self) -> None:
        self.controller.trigger_scrape.return_value = TriggerResult(started=False, reason="already_running")
        job = self.scheduler.get_job("scrape-cron")

        with self.assertLogs("newspipe.scheduler", level="WARNING") as logs:
            await job.func()

        self.assertIn("Scheduled scrape skipped", logs.output[0])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
