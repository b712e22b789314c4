"""Task lifecycle engine for the team board.

This package provides the task model, the file-backed board store, the
consensus predicates, and the workflow state machine that drives a task's
``workflow_status`` from its assignees' and verifiers' confirmations.
"""
