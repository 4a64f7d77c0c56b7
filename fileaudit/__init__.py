"""fileaudit - durable audit trail of file changes in watched project folders."""

__version__ = "0.1.0"
