"""Bidirectional issue-tracker synchronization for the team board."""
