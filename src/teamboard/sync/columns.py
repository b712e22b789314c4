"""Route imported issues to board columns by their bracketed title prefix.

``"[Bug] Login fails"`` goes to the column bound to the ``[Bug]`` rule and is
stored as ``"Login fails"``.  An unknown prefix creates a column and a rule on
the spot; a title without a prefix goes to the team's default column.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ..constants import DEFAULT_COLUMN_TITLE
from ..task_engine.model import Column, ColumnPrefixRule, Team
from ..task_engine.store import BoardTx


def extract_prefix(title: str) -> Optional[str]:
    """Return the leading ``[...]`` token, or None when there is none."""
    if not title or not title.startswith("["):
        return None
    end = title.find("]")
    if end <= 1:
        return None
    return title[: end + 1]


def strip_prefix(title: str, prefix: Optional[str]) -> str:
    if not prefix or title[: len(prefix)].lower() != prefix.lower():
        return title
    stripped = title[len(prefix):].strip()
    return stripped or title


@dataclass
class Route:
    column_id: str
    title: str
    prefix: Optional[str] = None


class ColumnRouter:
    """Resolve destination columns for one batch of issues.

    Build one router per batch, inside the batch's store transaction, so that
    issues sharing a new prefix land in a single newly created column.
    """

    def __init__(self, tx: BoardTx, team: Team) -> None:
        self._tx = tx
        self._team = team
        self._rules: dict[str, ColumnPrefixRule] = {
            rule.prefix.lower(): rule for rule in tx.list_prefix_rules(team.id)
        }
        self.created_columns: list[Column] = []

    def route(self, title: str) -> Route:
        prefix = extract_prefix(title)
        if prefix is None:
            return Route(column_id=self._default_column().id, title=title)

        rule = self._rules.get(prefix.lower())
        column = self._tx.get_column(rule.column_id) if rule else None
        if column is None:
            column = self._create_column(prefix[1:-1].strip() or prefix)
            rule = ColumnPrefixRule(column_id=column.id, team_id=self._team.id, prefix=prefix)
            self._tx.add_prefix_rule(rule)
            self._rules[prefix.lower()] = rule
            logger.info("Created column {!r} for prefix {} in team {}", column.title, prefix, self._team.id)
        return Route(column_id=column.id, title=strip_prefix(title, prefix), prefix=prefix)

    def _default_column(self) -> Column:
        if self._team.default_column_id:
            column = self._tx.get_column(self._team.default_column_id)
            if column is not None:
                return column
        for column in self._tx.list_columns(self._team.id):
            if column.title.lower() == DEFAULT_COLUMN_TITLE.lower():
                return column
        column = self._create_column(DEFAULT_COLUMN_TITLE)
        self._team.default_column_id = column.id
        self._tx.save_team(self._team)
        return column

    def _create_column(self, title: str) -> Column:
        positions = [c.position for c in self._tx.list_columns(self._team.id)]
        column = Column(team_id=self._team.id, title=title, position=max(positions) + 1 if positions else 0)
        self._tx.add_column(column)
        self.created_columns.append(column)
        return column
