from pathlib import Path

import pytest
from git import Repo

from scheduler_sync.backend import GitBackend, GitBackendError, parse_porcelain_status


def test_parse_porcelain_status_categories():
    output = "\0".join(
        [
            "?? new.json",
            " M tasks.json",
            "MM both-staged.json",
            "D  gone.json",
            " D removed.json",
            "A  added.json",
            "UU conflicted.json",
            "AA added-twice.json",
            "R  renamed.json",
            "original.json",
            "",
        ]
    )

    status = parse_porcelain_status(output, behind=2)

    assert status.untracked == ("new.json",)
    assert status.modified == ("tasks.json", "both-staged.json", "renamed.json")
    assert status.deleted == ("gone.json", "removed.json")
    assert status.created == ("added.json",)
    assert status.conflicted == ("conflicted.json", "added-twice.json")
    assert status.behind == 2
    assert status.change_count == 7
    assert status.has_changes


def test_parse_porcelain_keeps_spaces_in_paths():
    status = parse_porcelain_status("?? my tasks.json\0")
    assert status.untracked == ("my tasks.json",)


def test_empty_status_is_clean():
    status = parse_porcelain_status("")
    assert not status.has_changes
    assert status.conflicted == ()


def test_conflicts_alone_are_not_changes():
    status = parse_porcelain_status("UU tasks.json\0")
    assert not status.has_changes
    assert status.conflicted == ("tasks.json",)


@pytest.fixture
def repo_dir(tmp_path) -> Path:
    path = tmp_path / "data"
    Repo.init(path)
    return path


def test_check_is_repo(tmp_path, repo_dir):
    assert GitBackend(repo_dir).check_is_repo()
    assert not GitBackend(tmp_path / "plain").check_is_repo()


def test_init_creates_repository(tmp_path):
    backend = GitBackend(tmp_path / "fresh")
    backend.init()
    assert (tmp_path / "fresh" / ".git").is_dir()
    assert backend.check_is_repo()


def test_status_add_commit(repo_dir):
    backend = GitBackend(repo_dir, author_name="Tester", author_email="tester@example.com")
    (repo_dir / "tasks.json").write_text("[]\n", encoding="utf-8")
    (repo_dir / "nested").mkdir()
    (repo_dir / "nested" / "notes.md").write_text("hi\n", encoding="utf-8")

    status = backend.status()
    assert set(status.untracked) == {"tasks.json", "nested/notes.md"}

    backend.add_all()
    sha = backend.commit("feat(task): Add \"First\"")

    repo = Repo(repo_dir)
    assert repo.head.commit.hexsha == sha
    assert repo.head.commit.author.name == "Tester"
    assert repo.head.commit.committer.email == "tester@example.com"
    assert not backend.status().has_changes


def test_git_failures_are_wrapped(repo_dir):
    backend = GitBackend(repo_dir)
    with pytest.raises(GitBackendError):
        backend.commit("nothing to commit")


def test_operations_outside_repository_fail(tmp_path):
    backend = GitBackend(tmp_path / "missing")
    with pytest.raises(GitBackendError, match="Not a git repository"):
        backend.status()


def test_list_remotes(repo_dir, tmp_path):
    backend = GitBackend(repo_dir)
    assert backend.list_remotes() == []
    Repo(repo_dir).create_remote("origin", (tmp_path / "remote.git").as_posix())
    assert backend.list_remotes() == ["origin"]


def test_rejects_unknown_strategy_and_side(repo_dir):
    backend = GitBackend(repo_dir)
    with pytest.raises(ValueError):
        backend.pull("origin", "main", strategy="octopus")
    with pytest.raises(ValueError):
        backend.checkout_side("tasks.json", "mine")


def test_terminal_prompts_disabled(repo_dir, monkeypatch):
    monkeypatch.delenv("GIT_TERMINAL_PROMPT", raising=False)
    backend = GitBackend(repo_dir)
    assert backend._env["GIT_TERMINAL_PROMPT"] == "0"
