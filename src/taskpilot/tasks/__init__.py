"""
Task subsystem.

Components:
- task_models.py: data structures (Employee, Task, Invitation, TaskUpdate)
- events.py: domain events emitted by lifecycle transitions
- scoring.py: candidate scoring and ranking
- costing.py: payment suggestion on completion
- lifecycle.py: task / invitation state machine
- task_store.py: SQLite-backed storage with conditional updates
- dispatcher.py: single action entry point for UI and chat front-ends
"""
