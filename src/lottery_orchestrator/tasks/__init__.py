"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, TaskLogEntry)
- task_store.py: SQLite-backed durable queue (atomic claim, append-only logs)
- task_processor.py: runs one claimed task and records the terminal transition
- task_scheduler.py: polling loop that claims and processes pending tasks
- task_api.py: caller-facing operations (enqueue, status, debug, force, reset, sweep)
"""
