"""Worker supervision."""

from bitseed.concurrency.supervisor import ConcurrentUnit, Supervisor, Worker

__all__ = ["ConcurrentUnit", "Supervisor", "Worker"]
