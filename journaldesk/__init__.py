"""JournalDesk — editorial workflow, double-blind review and publication for an academic journal."""

__version__ = "1.0.0"
