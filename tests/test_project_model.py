from datetime import datetime, timedelta, timezone

from stackbit_api.models.project import (
    COLLABORATOR_STATUS_COLLABORATOR,
    COLLABORATOR_STATUS_INVITATION_SENT,
    CollaboratorNotification,
    Project,
)
from stackbit_api.models.users import User
from stackbit_api.utils.collections import add_to_set, unique, upsert_by_key
from stackbit_api.utils.datetime import end_of_trial, is_past, to_utc
from stackbit_api.utils.logging import mask_token, sanitize_for_log

from tests.fakes import make_project


def _project(**overrides) -> Project:
    return Project.from_document(make_project(**overrides))


class TestProject:
    def test_from_document(self):
        project = _project(
            collaborators=[
                {"_id": "c1", "userId": "u1", "role": "viewer"},
                {
                    "_id": "c2",
                    "inviteToken": "tok",
                    "inviteEmail": "x@acme.io",
                    "notifications": [{"type": "digest", "subscribed": False}],
                },
            ],
            subscription={"tierId": "2021a-pro", "pastTierIds": ["2021a-free"]},
        )

        assert project.subscription.past_tier_ids == ("2021a-free",)
        first, second = project.collaborators
        assert first.status == COLLABORATOR_STATUS_COLLABORATOR
        assert second.status == COLLABORATOR_STATUS_INVITATION_SENT
        assert second.role_or_default.name == "admin"
        assert second.notifications[0].subscribed is False
        assert project.get_collaborator_by_token("tok") is second
        assert project.get_collaborator_by_user_id("u1") is first
        assert project.get_collaborator_by_id("c2") is second

    def test_missing_collaborator_list(self):
        project = _project(collaborators=None)
        assert project.collaborators is None
        assert project.iter_collaborators() == ()

    def test_active_split_test(self):
        assert _project(splitTests=[{"status": "provisioned"}]).has_active_split_test()
        assert not _project(splitTests=[{"status": "deleted"}]).has_active_split_test()
        assert not _project().has_active_split_test()

    def test_split_test_by_environment_is_exact(self):
        single = {"variants": [{"environment": "staging"}]}
        pair = {"variants": [{"environment": "staging"}, {"environment": "main"}]}
        project = _project(splitTests=[pair, single])

        assert project.get_split_test_by_environment_name("staging") == single
        assert project.get_split_test_by_environment_name("main") is None

    def test_summary(self):
        summary = _project().summary("owner@acme.io")
        assert summary == {
            "id": "p1",
            "name": "Marketing Site",
            "cmsId": "git",
            "cmsTitle": "Git",
            "ownerEmail": "owner@acme.io",
            "siteUrl": "https://marketing.example.org",
        }

    def test_user_roles(self):
        assert User(id="a", roles=("admin",)).is_admin
        assert not User(id="a", roles=("support_admin",)).is_support_admin
        assert User(id="a", roles=("admin", "support_admin")).is_support_admin


class TestHelpers:
    def test_set_helpers(self):
        assert add_to_set(["a"], "a") == ["a"]
        assert add_to_set(["a"], "b") == ["a", "b"]
        assert unique(["b", "a", "b"]) == ["b", "a"]

    def test_upsert_by_key(self):
        old = CollaboratorNotification(type="digest")
        other = CollaboratorNotification(type="mentions")
        new = CollaboratorNotification(type="digest", subscribed=True)

        result = upsert_by_key([old, other], new, key=lambda n: n.type)

        assert result == [new, other]
        assert upsert_by_key([other], new, key=lambda n: n.type) == [other, new]

    def test_end_of_trial_keeps_start_timezone(self):
        tz = timezone(timedelta(hours=-7))
        start = datetime(2026, 2, 27, 22, 15, tzinfo=tz)

        assert end_of_trial(start, 14) == datetime(2026, 3, 13, 23, 59, 59, 999000, tzinfo=tz)

    def test_is_past(self):
        now = datetime(2026, 10, 17, tzinfo=timezone.utc)
        assert is_past(None, now)
        assert is_past(now, now)
        assert not is_past(now + timedelta(seconds=1), now)
        assert is_past(datetime(2026, 10, 16), now)

    def test_to_utc(self):
        assert to_utc(None) is None
        assert to_utc(datetime(2026, 1, 1)).tzinfo is timezone.utc

    def test_log_sanitizing(self):
        assert sanitize_for_log("a\r\nb\x00c") == "a bc"
        assert sanitize_for_log(None) == ""
        assert sanitize_for_log("x" * 5, max_length=3) == "xxx...[truncated]"
        assert mask_token("abcdef-123") == "abcdef..."
        assert mask_token(None) == ""
