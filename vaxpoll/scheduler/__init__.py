from vaxpoll.scheduler.poll_job import CycleOutcome, PollScheduler, jittered_trigger

__all__ = ["CycleOutcome", "PollScheduler", "jittered_trigger"]
