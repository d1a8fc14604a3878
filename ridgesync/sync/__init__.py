"""Repository sync: the check, update and trigger cycle run by the timer.

This package provides:
- PID lock: cross-process mutual exclusion for one working copy
- Outcomes: what a run did, and the exit code the scheduler sees
- The agent: lock, detect drift, update, validate layout, trigger the applier
"""
