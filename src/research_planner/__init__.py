"""Research Planner: projects, milestones and tasks with cascading deletes."""

__version__ = "1.0.0"
