from .scheduler import JobHandle, Scheduler, TickReport

__all__ = ["JobHandle", "Scheduler", "TickReport"]
