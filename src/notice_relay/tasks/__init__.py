"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskMode, TaskStatus)
- task_store.py: in-memory table + JSON snapshot
- subscriptions.py / streams.py: subscription index and continuous-poll timers
- task_engine.py: lifecycle engine (one-shot, continuous poll, subscribe)
- webhook.py: inbound webhook events
- task_scheduler.py: polling loop that pushes ready results
- task_api.py: client message routing
"""
