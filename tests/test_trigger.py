import pytest

from ciflow.trigger import DEFAULT_PR_ACTIONS, EventKind, TriggerEvent, TriggerPolicy


def test_push_to_main_admitted():
    policy = TriggerPolicy()
    assert policy.admits(TriggerEvent(EventKind.PUSH, ref="main"))


def test_push_to_other_branch_rejected():
    policy = TriggerPolicy()
    ev = TriggerEvent(EventKind.PUSH, ref="feature/x")
    assert not policy.admits(ev)
    assert "feature/x" in policy.reason(ev)


def test_push_without_ref_rejected():
    assert not TriggerPolicy().admits(TriggerEvent(EventKind.PUSH))


def test_push_branch_globs():
    policy = TriggerPolicy(push_branches=("main", "release/*"))
    assert policy.admits(TriggerEvent(EventKind.PUSH, ref="release/1.2"))
    assert not policy.admits(TriggerEvent(EventKind.PUSH, ref="releases"))


@pytest.mark.parametrize("action", DEFAULT_PR_ACTIONS)
def test_pull_request_lifecycle_admitted(action):
    assert TriggerPolicy().admits(TriggerEvent(EventKind.PULL_REQUEST, ref="feat", action=action))


@pytest.mark.parametrize("action", ["closed", "labeled", None])
def test_pull_request_other_actions_rejected(action):
    assert not TriggerPolicy().admits(TriggerEvent(EventKind.PULL_REQUEST, ref="feat", action=action))


def test_manual_dispatch():
    assert TriggerPolicy().admits(TriggerEvent(EventKind.MANUAL))
    policy = TriggerPolicy(manual=False)
    assert not policy.admits(TriggerEvent(EventKind.MANUAL))
    assert policy.reason(TriggerEvent(EventKind.MANUAL)) == "manual dispatch disabled"


def test_disabled_kinds_rejected():
    policy = TriggerPolicy(push_enabled=False, pull_request_enabled=False)
    assert not policy.admits(TriggerEvent(EventKind.PUSH, ref="main"))
    assert not policy.admits(TriggerEvent(EventKind.PULL_REQUEST, action="opened"))


def test_from_github_push_strips_ref():
    ev = TriggerEvent.from_github("push", {"ref": "refs/heads/main", "after": "abc123"})
    assert ev.kind is EventKind.PUSH
    assert ev.ref == "main"
    assert ev.revision == "abc123"


def test_from_github_tag_push_is_not_a_branch():
    ev = TriggerEvent.from_github("push", {"ref": "refs/tags/v1.0", "after": "abc"})
    assert ev.ref is None
    assert ev.tag == "v1.0"
    policy = TriggerPolicy(push_branches=("*",))
    assert not policy.admits(ev)
    assert "tag push" in policy.reason(ev)
    # A branch that merely looks like a version still counts as a branch.
    assert policy.admits(TriggerEvent.from_github("push", {"ref": "refs/heads/v1.0"}))


def test_from_github_pull_request_uses_head_sha():
    payload = {
        "action": "synchronize",
        "pull_request": {"head": {"ref": "feat", "sha": "headsha"}},
    }
    ev = TriggerEvent.from_github("pull_request", payload)
    assert ev.kind is EventKind.PULL_REQUEST
    assert ev.action == "synchronize"
    assert ev.ref == "feat"
    assert ev.revision == "headsha"


def test_from_github_workflow_dispatch_is_manual():
    ev = TriggerEvent.from_github("workflow_dispatch", {"ref": "refs/heads/dev"})
    assert ev.kind is EventKind.MANUAL
    assert ev.ref == "dev"


def test_from_github_unsupported_event():
    with pytest.raises(ValueError, match="Unsupported event"):
        TriggerEvent.from_github("issues", {})


def test_to_dict():
    ev = TriggerEvent(EventKind.PUSH, ref="main", sha="s")
    assert ev.to_dict() == {"kind": "push", "ref": "main", "action": None, "sha": "s", "head_sha": None, "tag": None}
