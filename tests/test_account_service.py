"""Tests for the account lifecycle: creation saga, updates, deletes, resets."""

import pytest
from kombu.exceptions import OperationalError

from party_admin.core.config import settings
from party_admin.core.exceptions import (
    AuthenticationError, AuthorizationError, ExternalDependencyError,
    InconsistentStateError, ResourceConflictError, ResourceNotFoundError,
    ValidationError,
)
from party_admin.models.admin_user import AdminUser
from party_admin.models.audit_log import AuditLog
from party_admin.services import account_service as account_module
from party_admin.services.account_store import AccountStore
from party_admin.services.account_service import account_service
from party_admin.services.notification_service import notification_service
from party_admin.services.role_service import role_service
from party_admin.tasks import celery_app as tasks

from conftest import PASSWORD


def _actions(db):
    db.expire_all()
    return [entry.action for entry in db.query(AuditLog).order_by(AuditLog.id).all()]


def _create(db, identity, roles, actor, role_name="user", email="new@example.com", **kwargs):
    return account_service.create_account(
        db, identity,
        email=email,
        full_name=kwargs.pop("full_name", "New Person"),
        password=kwargs.pop("password", PASSWORD),
        role_id=roles[role_name].id,
        actor=actor,
        **kwargs,
    )


class TestCreate:
    def test_super_admin_creates_account(self, db, identity, roles, make_account, actor_of):
        boss = make_account("super_admin")
        actor = actor_of(boss)

        account = _create(db, identity, roles, actor, "admin")

        assert account.role_id == roles["admin"].id
        assert account.invited_by == boss.id
        identity_user = identity.get_user_by_id(account.id)
        assert identity_user.email == "new@example.com"
        assert identity_user.email_confirmed_at is not None
        assert identity_user.user_metadata["full_name"] == "New Person"
        assert identity_user.app_metadata == {"is_admin": True, "created_by": boss.id}
        assert "account.created" in _actions(db)

    def test_top_tier_can_create_top_tier(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        account = _create(db, identity, roles, actor, "super_admin")
        assert account.role_id == roles["super_admin"].id

    def test_bootstrap_without_actor(self, db, identity, roles):
        account = _create(db, identity, roles, None, "super_admin", email="root@example.com")
        assert account.invited_by is None
        assert identity.get_user_by_id(account.id).app_metadata["created_by"] is None

    @pytest.mark.parametrize("field", ["email", "full_name", "password"])
    def test_missing_fields(self, db, identity, roles, field):
        kwargs = {"email": "x@example.com", "full_name": "X", "password": PASSWORD}
        kwargs[field] = ""
        with pytest.raises(ValidationError, match="Missing required fields"):
            account_service.create_account(
                db, identity, role_id=roles["user"].id, actor=None, **kwargs,
            )

    def test_invalid_email(self, db, identity, roles):
        with pytest.raises(ValidationError, match="Invalid email format"):
            _create(db, identity, roles, None, email="not-an-email")

    def test_short_password(self, db, identity, roles):
        with pytest.raises(ValidationError, match="at least 6 characters"):
            _create(db, identity, roles, None, password="12345")

    def test_validation_runs_before_role_lookup(self, db, identity, roles):
        with pytest.raises(ValidationError):
            account_service.create_account(
                db, identity, "bad", "Name", PASSWORD, "no-such-role", actor=None,
            )

    def test_duplicate_email_leaves_no_identity(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        existing = make_account("user", email="dup@example.com")
        before = [u.id for u in identity.list_users()]

        with pytest.raises(ResourceConflictError):
            _create(db, identity, roles, actor, email="dup@example.com")

        assert [u.id for u in identity.list_users()] == before
        assert identity.find_user_by_email("dup@example.com").id == existing.id

    def test_case_variant_duplicate_is_rejected(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        first = _create(db, identity, roles, actor, email="Dup@Example.com")
        assert first.email == "dup@example.com"
        assert identity.get_user_by_id(first.id).email == "dup@example.com"
        before = [u.id for u in identity.list_users()]

        with pytest.raises(ResourceConflictError):
            _create(db, identity, roles, actor, email="  dup@example.COM ")

        assert [u.id for u in identity.list_users()] == before
        assert db.query(AdminUser).filter(AdminUser.email == "dup@example.com").count() == 1

    def test_overlong_password(self, db, identity, roles):
        with pytest.raises(ValidationError, match="at most 72 bytes"):
            _create(db, identity, roles, None, password="x" * 80)
        assert identity.list_users() == []

    def test_email_registered_only_with_identity_provider(self, db, identity, roles):
        identity.create_user("taken@example.com", PASSWORD)
        with pytest.raises(ResourceConflictError):
            _create(db, identity, roles, None, email="taken@example.com")
        assert db.query(AdminUser).count() == 0

    def test_unknown_or_inactive_role(self, db, identity, roles):
        with pytest.raises(ResourceNotFoundError):
            account_service.create_account(
                db, identity, "a@example.com", "A", PASSWORD, "no-such-role", actor=None,
            )
        role_service.set_active(db, "user", False)
        with pytest.raises(ResourceNotFoundError, match="Invalid or inactive role"):
            _create(db, identity, roles, None, email="b@example.com")
        assert identity.list_users() == []

    def test_mid_tier_cannot_assign_top_tier(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        count = len(identity.list_users())

        with pytest.raises(AuthorizationError, match="Only super admins"):
            _create(db, identity, roles, actor, "super_admin")

        assert len(identity.list_users()) == count
        assert identity.find_user_by_email("new@example.com") is None

    def test_plain_role_cannot_create(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("user"))
        with pytest.raises(AuthorizationError, match="Insufficient permissions to create users"):
            _create(db, identity, roles, actor, "user")

    def test_deactivated_admin_role_fails_closed(self, db, identity, roles, make_account, actor_of):
        admin = make_account("admin")
        role_service.set_active(db, "admin", False)
        with pytest.raises(AuthorizationError):
            _create(db, identity, roles, actor_of(admin), "user")

    def test_failed_directory_insert_is_compensated(self, db, identity, roles, make_account, actor_of, monkeypatch):
        actor = actor_of(make_account("super_admin"))

        def broken_insert(self, *args, **kwargs):
            raise ExternalDependencyError("Directory store unavailable")

        monkeypatch.setattr(AccountStore, "insert", broken_insert)
        with pytest.raises(ExternalDependencyError):
            _create(db, identity, roles, actor, email="ghost@example.com")

        assert identity.find_user_by_email("ghost@example.com") is None
        assert db.query(AdminUser).filter(AdminUser.email == "ghost@example.com").count() == 0
        assert "account.orphaned_identity" not in _actions(db)

    def test_compensation_retries_then_records_orphan(self, db, identity, roles, monkeypatch):
        calls = []

        def broken_insert(self, *args, **kwargs):
            raise ExternalDependencyError("Directory store unavailable")

        def broken_delete(user_id):
            calls.append(user_id)
            raise ExternalDependencyError("Identity provider unavailable")

        monkeypatch.setattr(AccountStore, "insert", broken_insert)
        monkeypatch.setattr(identity, "delete_user", broken_delete)
        monkeypatch.setattr(settings, "COMPENSATION_ATTEMPTS", 3)
        monkeypatch.setattr(settings, "COMPENSATION_BACKOFF_SECONDS", 0)

        with pytest.raises(ExternalDependencyError):
            _create(db, identity, roles, None, email="orphan@example.com")

        orphan = identity.find_user_by_email("orphan@example.com")
        assert orphan is not None
        assert calls == [orphan.id] * 3
        entry = db.query(AuditLog).filter(AuditLog.action == "account.orphaned_identity").one()
        assert entry.resource_id == orphan.id

    def test_welcome_email_is_best_effort(self, db, identity, roles, monkeypatch):
        queued = []
        monkeypatch.setattr(
            account_module.notification_service, "enqueue_welcome",
            lambda email, name, role: queued.append((email, name, role)) or False,
        )

        account = _create(db, identity, roles, None, send_welcome_email=True)

        assert queued == [("new@example.com", "New Person", "user")]
        assert identity.get_user_by_id(account.id).user_metadata["welcome_message"] is True

    def test_no_welcome_email_by_default(self, db, identity, roles, monkeypatch):
        queued = []
        monkeypatch.setattr(
            account_module.notification_service, "enqueue_welcome",
            lambda *args: queued.append(args),
        )
        _create(db, identity, roles, None)
        assert queued == []


class TestNotifications:
    def test_queue_failure_is_swallowed(self, monkeypatch):
        def broken_delay(*args, **kwargs):
            raise OperationalError("broker down")

        monkeypatch.setattr(tasks.send_welcome_email, "delay", broken_delay)
        assert notification_service.enqueue_welcome("a@example.com", "A", "user") is False

    def test_welcome_task_skips_without_smtp(self, monkeypatch):
        monkeypatch.setattr(settings, "SMTP_HOST", None)
        result = tasks.send_welcome_email.apply(args=("a@example.com", "A", "user")).get()
        assert result == {"status": "skipped", "email": "a@example.com"}

    def test_welcome_message_content(self):
        message = tasks.build_welcome_message("a@example.com", "Ann", "admin")
        assert message["To"] == "a@example.com"
        assert "Ann" in message.get_content()
        assert "'admin'" in message.get_content()


class TestUpdate:
    def test_admin_updates_user(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("user")

        updated = account_service.update_account(
            db, identity, target.id, actor, full_name="Renamed", email="renamed@example.com",
        )

        assert updated.full_name == "Renamed"
        assert updated.email == "renamed@example.com"
        identity_user = identity.get_user_by_id(target.id)
        assert identity_user.email == "renamed@example.com"
        assert identity_user.user_metadata["full_name"] == "Renamed"
        assert "account.updated" in _actions(db)

    def test_admin_cannot_touch_super_admin(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("super_admin", full_name="Top Dog")

        with pytest.raises(AuthorizationError):
            account_service.update_account(db, identity, target.id, actor, full_name="Demoted")

        db.expire_all()
        assert db.get(AdminUser, target.id).full_name == "Top Dog"
        assert identity.get_user_by_id(target.id).user_metadata["full_name"] == "Top Dog"

    def test_admin_cannot_promote_to_super_admin(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("user")
        with pytest.raises(AuthorizationError, match="Only super admins"):
            account_service.update_account(db, identity, target.id, actor, role_id=roles["super_admin"].id)

    def test_super_admin_changes_role(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        target = make_account("user")
        updated = account_service.update_account(db, identity, target.id, actor, role_id=roles["admin"].id)
        assert updated.role_id == roles["admin"].id
        assert updated.role.name == "admin"

    def test_self_service_profile_update(self, db, identity, roles, make_account, actor_of):
        me = make_account("user")
        updated = account_service.update_account(db, identity, me.id, actor_of(me), full_name="Me Myself")
        assert updated.full_name == "Me Myself"

    def test_self_service_cannot_change_own_role(self, db, identity, roles, make_account, actor_of):
        me = make_account("user")
        with pytest.raises(AuthorizationError):
            account_service.update_account(db, identity, me.id, actor_of(me), role_id=roles["admin"].id)

    def test_plain_role_cannot_edit_others(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("user"))
        other = make_account("user")
        with pytest.raises(AuthorizationError):
            account_service.update_account(db, identity, other.id, actor, full_name="Nope")

    def test_email_conflict(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        make_account("user", email="one@example.com")
        two = make_account("user", email="two@example.com")
        with pytest.raises(ResourceConflictError):
            account_service.update_account(db, identity, two.id, actor, email="one@example.com")

    def test_email_conflict_ignores_case(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        make_account("user", email="one@example.com")
        two = make_account("user", email="two@example.com")
        with pytest.raises(ResourceConflictError):
            account_service.update_account(db, identity, two.id, actor, email="ONE@example.com")

    def test_inactive_role_rejected(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        target = make_account("user")
        role_service.set_active(db, "admin", False)
        with pytest.raises(ResourceNotFoundError):
            account_service.update_account(db, identity, target.id, actor, role_id=roles["admin"].id)

    def test_unknown_account(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        with pytest.raises(ResourceNotFoundError):
            account_service.update_account(db, identity, "missing", actor, full_name="X")

    def test_directory_failure_after_identity_update(self, db, identity, roles, make_account, actor_of, monkeypatch):
        actor = actor_of(make_account("super_admin"))
        target = make_account("user", email="before@example.com")

        def broken_update(self, *args, **kwargs):
            raise ExternalDependencyError("Directory store unavailable")

        monkeypatch.setattr(AccountStore, "update", broken_update)
        with pytest.raises(InconsistentStateError):
            account_service.update_account(db, identity, target.id, actor, email="after@example.com")

        assert identity.get_user_by_id(target.id).email == "after@example.com"
        assert "account.inconsistent" in _actions(db)

    def test_role_only_failure_is_not_inconsistent(self, db, identity, roles, make_account, actor_of, monkeypatch):
        actor = actor_of(make_account("super_admin"))
        target = make_account("user")

        def broken_update(self, *args, **kwargs):
            raise ExternalDependencyError("Directory store unavailable")

        monkeypatch.setattr(AccountStore, "update", broken_update)
        with pytest.raises(ExternalDependencyError) as info:
            account_service.update_account(db, identity, target.id, actor, role_id=roles["admin"].id)
        assert not isinstance(info.value, InconsistentStateError)


class TestDelete:
    def test_admin_deletes_user(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("user")
        target_id = target.id

        account_service.delete_account(db, identity, target_id, actor)

        db.expire_all()
        assert db.get(AdminUser, target_id) is None
        assert identity.get_user_by_id(target_id) is None
        assert "account.deleted" in _actions(db)

    def test_self_deletion_refused(self, db, identity, roles, make_account, actor_of):
        me = make_account("super_admin")
        with pytest.raises(AuthorizationError, match="cannot delete your own account"):
            account_service.delete_account(db, identity, me.id, actor_of(me))

    def test_unpermitted_delete_leaves_both_stores(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("super_admin")

        with pytest.raises(AuthorizationError):
            account_service.delete_account(db, identity, target.id, actor)

        db.expire_all()
        assert db.get(AdminUser, target.id) is not None
        assert identity.get_user_by_id(target.id) is not None

    def test_plain_role_cannot_delete(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("user"))
        target = make_account("user")
        with pytest.raises(AuthorizationError):
            account_service.delete_account(db, identity, target.id, actor)
        assert identity.get_user_by_id(target.id) is not None

    def test_missing_identity_still_cascades(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        target = make_account("user")
        target_id = target.id
        identity.delete_user(target_id)

        account_service.delete_account(db, identity, target_id, actor)

        db.expire_all()
        assert db.get(AdminUser, target_id) is None

    def test_failed_cascade_is_inconsistent(self, db, identity, roles, make_account, actor_of, monkeypatch):
        actor = actor_of(make_account("super_admin"))
        target = make_account("user")
        target_id = target.id

        def broken_delete(self, account):
            raise ExternalDependencyError("Directory store unavailable")

        monkeypatch.setattr(AccountStore, "delete", broken_delete)
        with pytest.raises(InconsistentStateError):
            account_service.delete_account(db, identity, target_id, actor)

        assert identity.get_user_by_id(target_id) is None
        assert "account.inconsistent" in _actions(db)

    def test_unknown_account(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("super_admin"))
        with pytest.raises(ResourceNotFoundError):
            account_service.delete_account(db, identity, "missing", actor)


class TestPasswordAndSignIn:
    def test_reset_password(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("user")

        account_service.reset_password(db, identity, target.id, actor, "brand-new-pass")

        assert identity.sign_in_with_password(target.email, "brand-new-pass").user.id == target.id
        with pytest.raises(AuthenticationError):
            identity.sign_in_with_password(target.email, PASSWORD)
        assert "account.password_reset" in _actions(db)

    def test_reset_password_too_short(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("user")
        with pytest.raises(ValidationError):
            account_service.reset_password(db, identity, target.id, actor, "123")

    def test_reset_password_too_long(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("user")
        with pytest.raises(ValidationError, match="at most 72 bytes"):
            account_service.reset_password(db, identity, target.id, actor, "x" * 80)
        assert identity.sign_in_with_password(target.email, PASSWORD).user.id == target.id

    def test_reset_password_needs_management_rights(self, db, identity, roles, make_account, actor_of):
        actor = actor_of(make_account("admin"))
        target = make_account("super_admin")
        with pytest.raises(AuthorizationError):
            account_service.reset_password(db, identity, target.id, actor, "brand-new-pass")

    def test_record_sign_in(self, db, identity, roles, make_account):
        account = make_account("user")
        assert account.last_login is None
        account_service.record_sign_in(db, account.id)
        db.expire_all()
        assert db.get(AdminUser, account.id).last_login is not None
        assert account_service.record_sign_in(db, "unknown") is None


class TestReconcile:
    def test_report_and_fix(self, db, identity, roles, make_account):
        kept = make_account("user")
        managed = identity.create_user("managed@example.com", PASSWORD, app_metadata={"is_admin": True})
        foreign = identity.create_user("foreign@example.com", PASSWORD)
        dangling = make_account("user", email="dangling@example.com")
        dangling_id = dangling.id
        identity.delete_user(dangling_id)

        report = account_service.reconcile(db, identity)
        orphan_ids = {u["id"] for u in report["orphaned_identities"]}
        assert orphan_ids == {managed.id, foreign.id}
        assert report["accounts_without_identity"] == [{"id": dangling_id, "email": "dangling@example.com"}]
        assert report["fixed"] == []

        report = account_service.reconcile(db, identity, fix=True)
        fixed = {(f["id"], f["action"]) for f in report["fixed"]}
        assert fixed == {(managed.id, "identity_deleted"), (dangling_id, "directory_record_deleted")}

        db.expire_all()
        assert identity.get_user_by_id(managed.id) is None
        assert identity.get_user_by_id(foreign.id) is not None
        assert db.get(AdminUser, dangling_id) is None
        assert db.get(AdminUser, kept.id) is not None
