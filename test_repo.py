import subprocess
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from commitstats import (
    Author,
    CommitArgs,
    CommitArgsError,
    CommitDetail,
    CommitHash,
    CommitParseError,
    CommitStats,
    CommitStatsError,
    GitCommandError,
    Repo,
    commits_per_author,
    commits_per_month,
    parse_commit_output,
)
from conftest import GIT_HISTORY, utc_ts

# ============================================================================
# COMMIT FILTER
# ============================================================================


class TestCommitArgs:
    def test_defaults_select_everything(self):
        args = CommitArgs.builder().build()
        assert args.to_git_args() == ["--all", "--pretty=%H"]
        assert str(args) == ""

    def test_full_filter(self):
        args = (
            CommitArgs.builder()
            .since(utc_ts(2024, 1, 1))
            .until(utc_ts(2024, 6, 30))
            .author(Author.from_text("Jane Doe <jane@example.com>"))
            .exclude_merges(True)
            .target_branch("develop")
            .build()
        )
        assert args.to_git_args() == [
            "develop",
            "--pretty=%H",
            "--since=2024-01-01",
            "--until=2024-06-30",
            "--author=Jane Doe",
            "--no-merges",
        ]
        assert list(args) == args.to_git_args()
        assert "author:Jane Doe <jane@example.com>" in str(args)
        assert "since:2024-01-01" in str(args)
        assert "target_branch:develop" in str(args)

    def test_exclude_author_uses_perl_regexp(self):
        args = CommitArgs.builder().exclude_author("Build Bot").build()
        assert args.to_git_args()[-2:] == ["--perl-regexp", "--author=^((?!Build Bot).*)$"]
        assert "exclude author:Build Bot" in str(args)

    def test_author_and_exclude_author_conflict(self):
        builder = CommitArgs.builder().author(Author("Jane")).exclude_author("bot")
        with pytest.raises(CommitArgsError, match="both author and exclude_author"):
            builder.build()

    def test_invalid_timestamps(self):
        with pytest.raises(CommitArgsError, match="since"):
            CommitArgs.builder().since(10**20).build()
        with pytest.raises(CommitArgsError, match="until"):
            CommitArgs(until=-(10**20)).validate()

    def test_errors_share_base_class(self):
        with pytest.raises(CommitStatsError):
            CommitArgs(author=Author("Jane"), exclude_author="x").validate()


# ============================================================================
# GIT SHOW PARSING
# ============================================================================

SHOW_OUTPUT = (
    "a9ae91ebf675cc57fb93cbcb6e179f89f0199e8e\n"
    "Jane Doe\n"
    "jane@example.com\n"
    "1709543000\n"
    "Fix the widget\n"
    " 3 files changed, 12 insertions(+), 4 deletions(-)\n"
)


class TestParseCommitOutput:
    def test_full_output(self):
        commit = parse_commit_output(SHOW_OUTPUT)
        assert commit.hash == CommitHash("a9ae91ebf675cc57fb93cbcb6e179f89f0199e8e")
        assert commit.author == Author("Jane Doe", "jane@example.com")
        assert commit.author_timestamp == 1709543000
        assert commit.subject == "Fix the widget"
        assert commit.stats == CommitStats(3, 12, 4)

    def test_blank_line_before_shortstat(self):
        output = SHOW_OUTPUT.replace("widget\n", "widget\n\n")
        assert parse_commit_output(output).stats == CommitStats(3, 12, 4)

    def test_only_deletions(self):
        output = "h\nJane\njane@example.com\n1\nsubject\n 1 file changed, 2 deletions(-)\n"
        assert parse_commit_output(output).stats == CommitStats(1, 0, 2)

    def test_only_insertions(self):
        output = "h\nJane\njane@example.com\n1\nsubject\n 1 file changed, 1 insertion(+)\n"
        assert parse_commit_output(output).stats == CommitStats(1, 1, 0)

    def test_empty_commit_has_zero_stats(self):
        output = "h\nJane\njane@example.com\n1\nMerge branch 'x'\n"
        commit = parse_commit_output(output)
        assert commit.stats == CommitStats.zero()
        assert commit.subject == "Merge branch 'x'"

    def test_missing_email_becomes_none(self):
        commit = parse_commit_output("h\nJane\n\n1\nsubject\n")
        assert commit.author.email is None

    def test_keeps_requested_hash(self):
        requested = CommitHash("abc")
        assert parse_commit_output(SHOW_OUTPUT, requested).hash is requested

    def test_bad_timestamp(self):
        with pytest.raises(CommitParseError, match="invalid timestamp"):
            parse_commit_output("h\nJane\njane@example.com\nyesterday\nsubject\n")

    def test_truncated_output(self):
        with pytest.raises(CommitParseError):
            parse_commit_output("h\nJane\n")


# ============================================================================
# REPO ADAPTER (mocked subprocess)
# ============================================================================


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestRepoCommands:
    def test_list_commits_runs_git_log(self, tmp_path):
        repo = Repo(str(tmp_path))
        with patch("commitstats.subprocess.run", return_value=completed("aaa\nbbb\n\n")) as run:
            hashes = repo.list_commits(CommitArgs.builder().exclude_merges().build())

        assert hashes == [CommitHash("aaa"), CommitHash("bbb")]
        cmd = run.call_args[0][0]
        assert cmd[:4] == ["git", "-C", str(tmp_path), "log"]
        assert "--no-merges" in cmd
        assert cmd[-1] == "--reverse"

    def test_list_commits_validates_first(self, tmp_path):
        repo = Repo(str(tmp_path))
        args = CommitArgs(author=Author("Jane"), exclude_author="bot")
        with patch("commitstats.subprocess.run") as run:
            with pytest.raises(CommitArgsError):
                repo.list_commits(args)
        run.assert_not_called()

    def test_git_failure(self, tmp_path):
        repo = Repo(str(tmp_path))
        with patch("commitstats.subprocess.run", return_value=completed(returncode=128, stderr="fatal: bad")):
            with pytest.raises(GitCommandError, match="fatal: bad"):
                repo.fetch_all()

    def test_git_missing(self, tmp_path):
        repo = Repo(str(tmp_path))
        with patch("commitstats.subprocess.run", side_effect=FileNotFoundError("git")):
            with pytest.raises(GitCommandError):
                repo.fetch()

    def test_commit_stats_uses_show(self, tmp_path):
        repo = Repo(str(tmp_path))
        with patch("commitstats.subprocess.run", return_value=completed(SHOW_OUTPUT)) as run:
            commit = repo.commit_stats(CommitHash("abc"))
        cmd = run.call_args[0][0]
        assert cmd[3:5] == ["show", "--shortstat"]
        assert cmd[-1] == "abc"
        assert commit.hash == CommitHash("abc")


class TestParallelExtraction:
    def _detail(self, commit):
        return CommitDetail(hash=commit, author=Author("Jane"), author_timestamp=0)

    def test_results_keep_input_order(self, tmp_path):
        repo = Repo(str(tmp_path))
        hashes = [CommitHash(str(i)) for i in range(8)]

        def slow_first(commit):
            # earlier hashes finish later
            time.sleep(0.01 * (8 - int(commit.value)))
            return self._detail(commit)

        progress = MagicMock()
        with patch.object(Repo, "commit_stats", side_effect=slow_first):
            details = repo.commits_stats(hashes, max_workers=4, progress=progress)

        assert [d.hash for d in details] == hashes
        assert progress.call_count == 8

    def test_first_error_aborts_batch(self, tmp_path):
        repo = Repo(str(tmp_path))
        hashes = [CommitHash(str(i)) for i in range(20)]
        def flaky(commit):
            if commit.value == "3":
                raise CommitParseError("boom")
            time.sleep(0.01)
            return self._detail(commit)

        with patch.object(Repo, "commit_stats", side_effect=flaky):
            with pytest.raises(CommitParseError, match="boom"):
                repo.commits_stats(hashes, max_workers=2)

    def test_earliest_failure_wins(self, tmp_path):
        repo = Repo(str(tmp_path))
        hashes = [CommitHash(str(i)) for i in range(10)]

        def failing(commit):
            # hash 0 fails last, hash 5 fails immediately
            if commit.value == "0":
                time.sleep(0.3)
                raise CommitParseError("error at index 0")
            if commit.value == "5":
                raise CommitParseError("error at index 5")
            return self._detail(commit)

        with patch.object(Repo, "commit_stats", side_effect=failing):
            with pytest.raises(CommitParseError, match="index 0"):
                repo.commits_stats(hashes, max_workers=6)

    def test_empty(self, tmp_path):
        assert Repo(str(tmp_path)).commits_stats([]) == []


# ============================================================================
# REPO ADAPTER (real git)
# ============================================================================


class TestRealRepository:
    def test_list_commits_oldest_first(self, git_repo):
        repo = Repo(git_repo)
        hashes = repo.list_commits(CommitArgs())
        assert len(hashes) == len(GIT_HISTORY)

        details = repo.commits_stats(hashes)
        timestamps = [d.author_timestamp for d in details]
        assert timestamps == sorted(timestamps)
        assert timestamps[0] == int(GIT_HISTORY[0][2].timestamp())

    def test_commit_details(self, git_repo):
        repo = Repo(git_repo)
        details = repo.commits_stats(repo.list_commits(CommitArgs()))

        first = details[0]
        assert first.author == Author("Alice", "alice@example.com")
        assert first.subject == "change 0"
        assert first.stats == CommitStats(files_changed=1, lines_added=3, lines_deleted=0)

        edit = details[2]
        assert edit.author == Author("alice", "ALICE@example.com")
        assert edit.stats == CommitStats(files_changed=1, lines_added=1, lines_deleted=1)

        last = details[3]
        assert last.stats == CommitStats(files_changed=2, lines_added=1, lines_deleted=1)

    def test_filters(self, git_repo):
        repo = Repo(git_repo)
        since = int(datetime(2024, 2, 1, tzinfo=timezone.utc).timestamp())
        assert len(repo.list_commits(CommitArgs.builder().since(since).build())) == 3

        bob_only = CommitArgs.builder().author(Author("Bob")).build()
        assert len(repo.list_commits(bob_only)) == 2

    def test_end_to_end_aggregation(self, git_repo):
        repo = Repo(git_repo)
        details = repo.commits_stats(repo.list_commits(CommitArgs()), max_workers=2)

        rows = commits_per_author(details).global_stats()
        assert [(row.author.name, row.commits_count) for row in rows] == [("Alice", 2), ("Bob", 2)]

        per_month = commits_per_month(details)
        assert list(per_month) == ["2024-01", "2024-02", "2024-03", "2024-04"]
        assert per_month.total().commits_count == 4

    def test_git_dir(self, git_repo, tmp_path):
        assert Repo(git_repo).git_dir() == ".git"
        with pytest.raises(GitCommandError):
            Repo(str(tmp_path / "elsewhere")).git_dir()

    def test_unknown_commit(self, git_repo):
        with pytest.raises(GitCommandError):
            Repo(git_repo).commit_stats(CommitHash("0" * 40))
