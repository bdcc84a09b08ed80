"""
Keeper task engine.

Components:
- task_models.py: data structures (Task, TaskStatus, OutcomeStatus, AttemptOutcome)
- task_selector.py: due-task selection (pure)
- task_executor.py: execution coordinator (claim / funds / submit / retry / classify)
- outcome_log.py: append-only execution log + recorder
- task_scheduler.py: polling loop driving selector -> coordinator -> recorder
"""
