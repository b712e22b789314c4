from __future__ import annotations

import json
from pathlib import Path

import pytest

from teamboard.cli import main
from teamboard.container import BoardContainer


@pytest.fixture
def project(tmp_path: Path) -> Path:
    container = BoardContainer(tmp_path)
    container.workflow.register_member('lead', 'Lead')
    team = container.workflow.create_team('core', leader_id='lead', repo_url='https://github.com/acme/widgets')
    (tmp_path / 'team_id').write_text(team.id)
    return tmp_path


def test_conflicts_prints_json(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    team_id = (project / 'team_id').read_text()
    rc = main(['--project-dir', str(project), '--log-level', 'WARNING', 'conflicts', '--team', team_id])
    assert rc == 0
    assert json.loads(capsys.readouterr().out) == {'conflicts': []}


def test_board_error_exits_nonzero(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    team_id = (project / 'team_id').read_text()
    # lead has no GitHub token
    rc = main(['--project-dir', str(project), 'import', '--team', team_id, '--actor', 'lead'])
    assert rc == 1
    assert 'Forbidden' in capsys.readouterr().err


def test_push_unknown_task(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    rc = main(['--project-dir', str(project), 'push', 'task-missing', '--actor', 'lead'])
    assert rc == 1
    assert 'NotFound' in capsys.readouterr().err


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        main([])


def test_show_renders_task(project: Path, capsys: pytest.CaptureFixture[str]) -> None:
    team_id = (project / 'team_id').read_text()
    container = BoardContainer(project)
    container.workflow.register_member('alice', 'Alice')
    task = container.workflow.create_task(team_id, 'Ship release', created_by='lead', assignee_ids=('alice',))
    container.workflow.accept(task.id, 'alice')

    rc = main(['--project-dir', str(project), 'show', task.id])
    assert rc == 0
    out = capsys.readouterr().out
    assert f'Task: {task.id}' in out
    assert 'IN_PROGRESS' in out
    assert 'alice' in out
    assert 'Not linked to an issue' in out

    rc = main(['--project-dir', str(project), 'show', task.id, '--json'])
    assert json.loads(capsys.readouterr().out)['consensus']['all_accepted'] is True
