"""Unit tests for ResolutionCoordinator and ResolverOracleClient."""

from unittest.mock import Mock, patch

import pytest
import requests

from pr_merge_resolver.analysis.conflict_detector import ConflictDetector, DetectionResult
from pr_merge_resolver.core.exceptions import (
    ContentFetchError,
    GitHubAPIError,
    ResolverOracleError,
)
from pr_merge_resolver.core.models import (
    ConflictRecord,
    FileVersion,
    PullRequestInfo,
    RepoRef,
    ResolvedFile,
)
from pr_merge_resolver.integrations.resolver_oracle import ResolverOracleClient
from pr_merge_resolver.resolution.coordinator import ResolutionCoordinator
from pr_merge_resolver.store.resolution_store import ResolutionStore


def _three_way(filename: str) -> tuple[FileVersion, FileVersion, FileVersion]:
    return (
        FileVersion(content=f"base {filename}\n", sha="mb", ref="merge-base"),
        FileVersion(content=f"ours {filename}\n", sha="headsha1234567", ref="feature"),
        FileVersion(content=f"theirs {filename}\n", sha="basesha1234567", ref="main"),
    )


@pytest.fixture
def oracle() -> Mock:
    client = Mock(spec=ResolverOracleClient)
    client.resolve.side_effect = lambda record: f"merged {record.filename}\n"
    return client


@pytest.fixture
def coordinator(
    github: Mock, fetcher: Mock, oracle: Mock, store: ResolutionStore
) -> ResolutionCoordinator:
    github.get_merge_base.return_value = "mb"
    fetcher.fetch_three_way.side_effect = lambda _repo, filename, *_a, **_k: _three_way(filename)
    return ResolutionCoordinator(Mock(spec=ConflictDetector), github, fetcher, oracle, store)


def _detection(pr_info: PullRequestInfo, *files: str) -> DetectionResult:
    return DetectionResult(files=list(files), strategy="content-diff", pull_request=pr_info)


class TestResolve:
    """Collecting proposals from the resolver service."""

    def test_resolves_each_file_in_order(
        self,
        coordinator: ResolutionCoordinator,
        fetcher: Mock,
        repo: RepoRef,
        pr_info: PullRequestInfo,
    ) -> None:
        coordinator.detector.analyze.return_value = _detection(pr_info, "b.py", "a.py")

        resolved = coordinator.resolve(repo, 42)

        assert resolved is not None
        assert [r.filename for r in resolved] == ["b.py", "a.py"]
        assert resolved[0].resolved_code == "merged b.py\n"
        assert resolved[0].record.strategy == "content-diff"
        assert resolved[0].record.ours.ref == "feature"
        fetcher.fetch_three_way.assert_any_call(
            repo, "b.py", "mb", ours=pr_info.head, theirs=pr_info.base
        )

    def test_no_conflicts_returns_none(
        self,
        coordinator: ResolutionCoordinator,
        github: Mock,
        fetcher: Mock,
        oracle: Mock,
        repo: RepoRef,
        pr_info: PullRequestInfo,
    ) -> None:
        coordinator.detector.analyze.return_value = _detection(pr_info)

        assert coordinator.resolve(repo, 42) is None
        oracle.resolve.assert_not_called()
        github.get_merge_base.assert_not_called()
        fetcher.fetch_three_way.assert_not_called()

    def test_failed_files_are_skipped(
        self,
        coordinator: ResolutionCoordinator,
        fetcher: Mock,
        oracle: Mock,
        repo: RepoRef,
        pr_info: PullRequestInfo,
    ) -> None:
        def fetch(_repo: RepoRef, filename: str, *_a: object, **_k: object) -> tuple:
            if filename == "unreadable.py":
                raise ContentFetchError("boom")
            return _three_way(filename)

        def resolve(record: ConflictRecord) -> str:
            if record.filename == "rejected.py":
                raise ResolverOracleError("status=error")
            return "merged\n"

        fetcher.fetch_three_way.side_effect = fetch
        oracle.resolve.side_effect = resolve

        resolved = coordinator.resolve_detected(
            repo, 42, _detection(pr_info, "unreadable.py", "rejected.py", "ok.py")
        )

        assert resolved is not None
        assert [r.filename for r in resolved] == ["ok.py"]
        assert oracle.resolve.call_count == 2

    def test_every_file_failing_returns_none(
        self,
        coordinator: ResolutionCoordinator,
        oracle: Mock,
        repo: RepoRef,
        pr_info: PullRequestInfo,
    ) -> None:
        oracle.resolve.side_effect = ResolverOracleError("down")

        assert coordinator.resolve_detected(repo, 42, _detection(pr_info, "a.py")) is None

    def test_merge_base_failure_returns_none(
        self,
        coordinator: ResolutionCoordinator,
        github: Mock,
        oracle: Mock,
        repo: RepoRef,
        pr_info: PullRequestInfo,
    ) -> None:
        github.get_merge_base.side_effect = GitHubAPIError("no", status_code=404)

        assert coordinator.resolve_detected(repo, 42, _detection(pr_info, "a.py")) is None
        oracle.resolve.assert_not_called()

    def test_pull_request_fetched_when_missing(
        self,
        coordinator: ResolutionCoordinator,
        github: Mock,
        repo: RepoRef,
        pr_info: PullRequestInfo,
    ) -> None:
        github.get_pull_request_info.return_value = pr_info
        detection = DetectionResult(files=["a.py"], strategy="git-merge")

        resolved = coordinator.resolve_detected(repo, 42, detection)

        assert resolved is not None
        github.get_pull_request_info.assert_called_once_with(repo, 42)


class TestPublish:
    """Storing proposals and announcing them."""

    def test_publish_comments_and_stores(
        self,
        coordinator: ResolutionCoordinator,
        github: Mock,
        store: ResolutionStore,
        repo: RepoRef,
        conflict_record: ConflictRecord,
    ) -> None:
        resolved = [ResolvedFile("src/app.py", "a\nmerged\nc", conflict_record)]

        stored = coordinator.publish(repo, 42, resolved)

        assert len(stored) == 1
        body = github.create_issue_comment.call_args.args[2]
        assert "Resolution Summary for `src/app.py`" in body
        row = store.get(repo, 42, "src/app.py")
        assert row is not None
        assert row.confirmed is False
        assert row.comment_id == 900
        assert row.ours_branch == "feature"
        assert row.theirs_branch == "main"
        assert row.base_content == "a\nb\nc"

    def test_comment_failure_still_stores(
        self,
        coordinator: ResolutionCoordinator,
        github: Mock,
        store: ResolutionStore,
        repo: RepoRef,
        conflict_record: ConflictRecord,
    ) -> None:
        github.create_issue_comment.side_effect = GitHubAPIError("locked", status_code=403)

        coordinator.publish(repo, 42, [ResolvedFile("src/app.py", "x", conflict_record)])

        row = store.get(repo, 42, "src/app.py")
        assert row is not None and row.comment_id is None


class TestResolverOracleClient:
    """HTTP contract of the resolver service."""

    @staticmethod
    def _response(status: int = 200, payload: object = None) -> Mock:
        response = Mock(spec=requests.Response)
        response.status_code = status
        response.text = str(payload)
        response.json.return_value = payload
        return response

    def test_resolve_posts_three_way_payload(self, conflict_record: ConflictRecord) -> None:
        client = ResolverOracleClient("http://resolver:5000/")
        payload = {"status": "success", "resolved_code": "merged"}
        with patch.object(
            client.session, "post", return_value=self._response(payload=payload)
        ) as mock_post:
            assert client.resolve(conflict_record) == "merged"

        assert mock_post.call_args.args == ("http://resolver:5000/mcr",)
        body = mock_post.call_args.kwargs["json"]
        assert body["name"] == "src/app.py"
        assert body["base_code"] == "a\nb\nc"
        assert body["branch_a_code"] == "a\nours\nc"
        assert body["branch_b_code"] == "a\ntheirs\nc"
        assert body["oursSha"] == "headsha1234567"
        assert mock_post.call_args.kwargs["timeout"] == 120

    @pytest.mark.parametrize(
        ("status", "payload", "match"),
        [
            (500, {"error": "x"}, "status 500"),
            (200, {"status": "error"}, "status=error"),
            (200, {"status": "success"}, "no resolved_code"),
            (200, ["not", "a", "dict"], "status=None"),
        ],
    )
    def test_resolve_rejects_bad_answers(
        self, conflict_record: ConflictRecord, status: int, payload: object, match: str
    ) -> None:
        client = ResolverOracleClient("http://resolver:5000")
        with (
            patch.object(
                client.session, "post", return_value=self._response(status, payload)
            ),
            pytest.raises(ResolverOracleError, match=match),
        ):
            client.resolve(conflict_record)

    def test_resolve_wraps_transport_errors(self, conflict_record: ConflictRecord) -> None:
        client = ResolverOracleClient("http://resolver:5000")
        with (
            patch.object(client.session, "post", side_effect=requests.Timeout("slow")),
            pytest.raises(ResolverOracleError, match="request failed"),
        ):
            client.resolve(conflict_record)

    def test_invalid_json(self, conflict_record: ConflictRecord) -> None:
        client = ResolverOracleClient("http://resolver:5000")
        response = self._response()
        response.json.side_effect = ValueError("bad json")
        with (
            patch.object(client.session, "post", return_value=response),
            pytest.raises(ResolverOracleError, match="invalid JSON"),
        ):
            client.resolve(conflict_record)
