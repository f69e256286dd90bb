"""Tests for tier3_platform modules (source, capabilities, resolver, session)."""
from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from permissions_sdk.tier0_core import metrics
from permissions_sdk.tier0_core.errors import FetchError, FetchErrorKind
from permissions_sdk.tier1_runtime.schemas import ResolvedCapabilities, Section
from permissions_sdk.tier1_runtime.validate import PolicyValidator
from permissions_sdk.tier2_reliability.fallback import get_default
from permissions_sdk.tier3_platform.capabilities import CapabilityView
from permissions_sdk.tier3_platform.session import PermissionSession
from permissions_sdk.tier3_platform.source import HttpPolicySource, StaticPolicySource

POLICY_URL = "http://policy.test/api/permissions/config"


class FlakySource:
    """Fails with *error* for the first *failures* calls, then serves *payload*."""

    def __init__(self, payload, failures, error):
        self._payload = payload
        self._failures = failures
        self._error = error
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.calls <= self._failures:
            raise self._error
        return self._payload


# ── capabilities ───────────────────────────────────────────────────────────

class TestCapabilityView:
    def test_visible_sections_keep_order(self, school_document):
        admin = PolicyValidator().validate(school_document).get("admin")
        view = CapabilityView()
        assert [s.url for s in view.visible_sections(admin)] == ["/lessons", "/assessments", "/users"]

    def test_can_write_ignores_readability(self, school_document):
        admin = PolicyValidator().validate(school_document).get("admin")
        view = CapabilityView()
        assert view.can_write(admin, "/audit") is True
        assert view.can_write(admin, "/assessments") is False
        assert view.can_write(admin, "/nowhere") is False

    def test_own_records_only_passthrough(self, school_document):
        doc = PolicyValidator().validate(school_document)
        assert CapabilityView.is_own_records_only(doc.get("teacher")) is True
        assert CapabilityView.is_own_records_only(doc.get("admin")) is False

    def test_memoized_per_policy_instance(self, school_document):
        view = CapabilityView()
        admin = PolicyValidator().validate(school_document).get("admin")
        first = view.visible_sections(admin)
        view.can_write(admin, "/users")
        assert view.visible_sections(admin) is first
        assert view.computations == 1

        replacement = PolicyValidator().validate(school_document).get("admin")
        view.visible_sections(replacement)
        assert view.computations == 2

    def test_forget_drops_memo(self, school_document):
        view = CapabilityView()
        admin = PolicyValidator().validate(school_document).get("admin")
        view.visible_sections(admin)
        view.forget()
        view.visible_sections(admin)
        assert view.computations == 2


# ── resolver ───────────────────────────────────────────────────────────────

class TestResolver:
    @pytest.mark.asyncio
    async def test_known_role(self, make_resolver, admin_document):
        resolver = make_resolver(StaticPolicySource(admin_document))
        caps = await resolver.resolve("admin")
        assert caps == ResolvedCapabilities(
            role="admin",
            own_records_only=False,
            visible_sections=(
                Section(name="Grades", url="/assessments", can_read=True, can_write=True),
            ),
        )
        assert resolver.is_degraded() is False

    @pytest.mark.asyncio
    async def test_unknown_role_fails_closed(self, make_resolver, admin_document):
        resolver = make_resolver(StaticPolicySource(admin_document))
        caps = await resolver.resolve("student")
        assert caps == ResolvedCapabilities(role="student", visible_sections=(), own_records_only=True)

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self, make_resolver, admin_document):
        source = StaticPolicySource(admin_document, delay=5)
        resolver = make_resolver(source, fetch_timeout=0.05)
        caps = await resolver.resolve("student")
        fallback_student = get_default().get("student")
        assert caps.visible_sections == fallback_student.sections
        assert caps.own_records_only is True
        assert caps.degraded is True
        assert resolver.is_degraded() is True
        assert resolver.degraded_reason() == "timeout"

    @pytest.mark.asyncio
    async def test_write_only_section_hidden_but_writable(self, make_resolver):
        document = {"roles": {"clerk": {"own_records_only": False, "sections": [
            {"name": "X", "url": "/x", "can_read": False, "can_write": True},
        ]}}}
        resolver = make_resolver(StaticPolicySource(document))
        caps = await resolver.resolve("clerk")
        assert caps.visible_sections == ()
        assert resolver.can_write("clerk", "/x") is True

    @pytest.mark.asyncio
    async def test_visible_sections_are_readable_subset(self, make_resolver, school_document):
        resolver = make_resolver(StaticPolicySource(school_document))
        for role, raw in school_document["roles"].items():
            caps = await resolver.resolve(role)
            expected = [s["url"] for s in raw["sections"] if s["can_read"]]
            assert list(caps.visible_urls) == expected

    @pytest.mark.asyncio
    async def test_idempotent_with_single_fetch(self, make_resolver, school_document):
        source = StaticPolicySource(school_document)
        resolver = make_resolver(source)
        first = await resolver.resolve("teacher")
        second = await resolver.resolve("teacher")
        assert first == second
        assert first.visible_sections is second.visible_sections
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_invalid_document_rejected_for_every_role(self, make_resolver, school_document):
        school_document["roles"]["teacher"]["own_records_only"] = "yes"
        resolver = make_resolver(StaticPolicySource(school_document))
        admin = await resolver.resolve("admin")
        teacher = await resolver.resolve("teacher")
        assert admin.visible_sections == get_default().get("admin").sections
        assert teacher.visible_sections == get_default().get("teacher").sections
        assert admin.degraded and teacher.degraded
        assert resolver.degraded_reason() == "malformed_role"

    @pytest.mark.asyncio
    async def test_unknown_role_under_fallback_still_fails_closed(self, make_resolver):
        resolver = make_resolver(StaticPolicySource(error=FetchError(FetchErrorKind.UNREACHABLE)))
        caps = await resolver.resolve("janitor")
        assert caps == ResolvedCapabilities.denied("janitor", degraded=True)

    @pytest.mark.asyncio
    async def test_http_status_error_recorded(self, make_resolver):
        before = metrics.sample("permissions_policy_fallback_total", reason="http_status") or 0.0
        resolver = make_resolver(StaticPolicySource(
            error=FetchError(FetchErrorKind.HTTP_STATUS, status_code=500)
        ))
        await resolver.resolve("admin")
        assert metrics.sample("permissions_policy_fallback_total", reason="http_status") == before + 1
        assert metrics.sample("permissions_policy_degraded") == 1

    @pytest.mark.asyncio
    async def test_can_write_before_any_resolve(self, make_resolver, admin_document):
        resolver = make_resolver(StaticPolicySource(admin_document))
        assert resolver.can_write("admin", "/assessments") is False
        await resolver.resolve("admin")
        assert resolver.can_write("admin", "/assessments") is True
        assert resolver.can_write("student", "/assessments") is False

    @pytest.mark.asyncio
    async def test_concurrent_cold_start_coalesces(self, make_resolver, school_document):
        source = StaticPolicySource(school_document, delay=0.02)
        resolver = make_resolver(source)
        results = await asyncio.gather(
            resolver.resolve("admin"),
            resolver.resolve("teacher"),
            resolver.resolve("admin"),
            resolver.resolve("nobody"),
        )
        assert source.calls == 1
        assert results[0] == results[2]
        assert results[3].visible_sections == ()

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_abort_shared_fetch(self, make_resolver, admin_document):
        source = StaticPolicySource(admin_document, delay=0.05)
        resolver = make_resolver(source)
        abandoned = asyncio.create_task(resolver.resolve("admin"))
        waiting = asyncio.create_task(resolver.resolve("admin"))
        await asyncio.sleep(0.01)
        abandoned.cancel()
        caps = await waiting
        with pytest.raises(asyncio.CancelledError):
            await abandoned
        assert caps.role == "admin"
        assert source.calls == 1
        assert resolver.cache.entry is not None

    @pytest.mark.asyncio
    async def test_stale_while_revalidate(self, make_resolver, manual_clock, admin_document, school_document):
        source = StaticPolicySource(admin_document)
        resolver = make_resolver(source, ttl=60)
        old = await resolver.resolve("admin")

        source.set_payload(school_document)
        manual_clock.advance(61)
        stale = await resolver.resolve("admin")
        assert stale == old

        await resolver.refresh()
        assert source.calls == 2
        fresh = await resolver.resolve("admin")
        assert [s.url for s in fresh.visible_sections] == ["/lessons", "/assessments", "/users"]

    @pytest.mark.asyncio
    async def test_force_refresh_waits_for_new_document(self, make_resolver, admin_document, school_document):
        source = StaticPolicySource(admin_document)
        resolver = make_resolver(source)
        await resolver.resolve("admin")
        source.set_payload(school_document)
        caps = await resolver.resolve("admin", force_refresh=True)
        assert "/lessons" in caps.visible_urls
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_degraded_entry_expires_sooner(self, make_resolver, manual_clock, admin_document):
        source = StaticPolicySource(error=FetchError(FetchErrorKind.UNREACHABLE))
        resolver = make_resolver(source, ttl=600, degraded_ttl=10)
        await resolver.resolve("admin")
        assert resolver.is_degraded()

        source.set_payload(admin_document)
        manual_clock.advance(11)
        await resolver.resolve("admin")
        await resolver.refresh()
        assert resolver.is_degraded() is False
        assert resolver.degraded_reason() is None

    @pytest.mark.asyncio
    async def test_invalidate_forces_refetch(self, make_resolver, admin_document):
        source = StaticPolicySource(admin_document)
        resolver = make_resolver(source)
        await resolver.resolve("admin")
        resolver.invalidate()
        assert resolver.cache.entry is None
        assert resolver.can_write("admin", "/assessments") is False
        await resolver.resolve("admin")
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_invalidate_during_fetch_leaves_cache_empty(self, make_resolver, admin_document):
        source = StaticPolicySource(admin_document, delay=0.05)
        resolver = make_resolver(source)
        pending = asyncio.create_task(resolver.resolve("admin"))
        await asyncio.sleep(0.01)
        resolver.invalidate()
        caps = await pending
        assert caps.role == "admin"
        assert resolver.cache.entry is None

    @pytest.mark.asyncio
    async def test_retries_when_configured(self, make_resolver, admin_document):
        source = FlakySource(admin_document, failures=2, error=FetchError(FetchErrorKind.UNREACHABLE))
        resolver = make_resolver(source, fetch_attempts=3, retry_wait=0)
        caps = await resolver.resolve("admin")
        assert caps.degraded is False
        assert source.calls == 3

    @pytest.mark.asyncio
    async def test_no_retry_by_default(self, make_resolver, admin_document):
        source = FlakySource(admin_document, failures=1, error=FetchError(FetchErrorKind.UNREACHABLE))
        resolver = make_resolver(source)
        caps = await resolver.resolve("admin")
        assert caps.degraded is True
        assert source.calls == 1

    @pytest.mark.asyncio
    async def test_os_error_from_source_is_unreachable(self, make_resolver):
        source = FlakySource(None, failures=1, error=ConnectionRefusedError("refused"))
        resolver = make_resolver(source)
        await resolver.resolve("admin")
        assert resolver.degraded_reason() == "unreachable"

    @pytest.mark.asyncio
    async def test_module_level_resolve_uses_default_resolver(self):
        from permissions_sdk.tier3_platform.resolver import is_degraded, resolve

        caps = await resolve("student")
        assert caps.visible_sections == get_default().get("student").sections
        assert is_degraded() is True


# ── http source ────────────────────────────────────────────────────────────

class TestHttpPolicySource:
    @pytest.mark.asyncio
    async def test_fetch_returns_json_body(self, admin_document):
        with respx.mock(assert_all_called=True) as router:
            route = router.get(POLICY_URL).mock(return_value=httpx.Response(200, json=admin_document))
            body = await HttpPolicySource(POLICY_URL, token="tok").fetch()
        assert body == admin_document
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer tok"
        assert request.headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_token(self, admin_document):
        with respx.mock(assert_all_called=True) as router:
            route = router.get(POLICY_URL).mock(return_value=httpx.Response(200, json=admin_document))
            await HttpPolicySource(POLICY_URL).fetch()
        assert "Authorization" not in route.calls.last.request.headers

    @pytest.mark.asyncio
    async def test_http_status(self):
        with respx.mock(assert_all_called=True) as router:
            router.get(POLICY_URL).mock(return_value=httpx.Response(503))
            with pytest.raises(FetchError) as info:
                await HttpPolicySource(POLICY_URL).fetch()
        assert info.value.kind is FetchErrorKind.HTTP_STATUS
        assert info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_connect_error_is_unreachable(self):
        with respx.mock(assert_all_called=True) as router:
            router.get(POLICY_URL).mock(side_effect=httpx.ConnectError("refused"))
            with pytest.raises(FetchError) as info:
                await HttpPolicySource(POLICY_URL).fetch()
        assert info.value.kind is FetchErrorKind.UNREACHABLE

    @pytest.mark.asyncio
    async def test_timeout(self):
        with respx.mock(assert_all_called=True) as router:
            router.get(POLICY_URL).mock(side_effect=httpx.ReadTimeout("slow"))
            with pytest.raises(FetchError) as info:
                await HttpPolicySource(POLICY_URL, timeout=0.5).fetch()
        assert info.value.kind is FetchErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_shared_client(self, admin_document):
        with respx.mock(assert_all_called=True) as router:
            router.get(POLICY_URL).mock(return_value=httpx.Response(200, json=admin_document))
            async with httpx.AsyncClient() as client:
                body = await HttpPolicySource(POLICY_URL, client=client).fetch()
        assert body == admin_document

    @pytest.mark.asyncio
    async def test_html_body_degrades_resolver(self, make_resolver):
        with respx.mock(assert_all_called=True) as router:
            router.get(POLICY_URL).mock(return_value=httpx.Response(200, text="<html>login</html>"))
            resolver = make_resolver(HttpPolicySource(POLICY_URL))
            caps = await resolver.resolve("teacher")
        assert caps.degraded is True
        assert resolver.degraded_reason() == "malformed_root"

    @pytest.mark.asyncio
    async def test_envelope_response_degrades_resolver(self, make_resolver, admin_document):
        with respx.mock(assert_all_called=True) as router:
            router.get(POLICY_URL).mock(
                return_value=httpx.Response(200, json={"status": "success", "data": admin_document})
            )
            resolver = make_resolver(HttpPolicySource(POLICY_URL))
            caps = await resolver.resolve("admin")
        assert caps.degraded is True
        assert resolver.degraded_reason() == "malformed_root"
        fallback_admin = get_default().get("admin")
        assert caps.visible_urls == tuple(s.url for s in fallback_admin.sections if s.can_read)

    @pytest.mark.asyncio
    async def test_deeply_nested_body_degrades_resolver(self, make_resolver):
        with respx.mock(assert_all_called=True) as router:
            router.get(POLICY_URL).mock(return_value=httpx.Response(200, text="[" * 200_000))
            resolver = make_resolver(HttpPolicySource(POLICY_URL))
            caps = await resolver.resolve("teacher")
        assert caps.degraded is True
        assert resolver.degraded_reason() == "malformed_root"

    @pytest.mark.asyncio
    async def test_resolves_with_metrics_enabled(self, make_resolver, admin_document):
        before = metrics.sample("permissions_policy_fetch_total", outcome="ok") or 0.0
        with respx.mock(assert_all_called=True) as router:
            router.get(POLICY_URL).mock(return_value=httpx.Response(200, json=admin_document))
            resolver = make_resolver(HttpPolicySource(POLICY_URL))
            caps = await resolver.resolve("admin")
        assert caps.degraded is False
        assert metrics.sample("permissions_policy_fetch_total", outcome="ok") == before + 1


# ── session ────────────────────────────────────────────────────────────────

class TestPermissionSession:
    def test_closed_before_load(self, make_resolver, admin_document):
        session = PermissionSession(make_resolver(StaticPolicySource(admin_document)))
        assert session.available_sections == ()
        assert session.can_write("/assessments") is False
        assert session.is_own_records_only is True

    @pytest.mark.asyncio
    async def test_load_answers_for_current_role(self, make_resolver, school_document):
        session = PermissionSession(make_resolver(StaticPolicySource(school_document)))
        caps = await session.load("teacher")
        assert session.role == "teacher"
        assert session.loading is False
        assert session.error is None
        assert session.available_sections == caps.visible_sections
        assert session.can_write("/attendances") is True
        assert session.can_write("/users") is False
        assert session.is_own_records_only is True
        assert session.is_degraded() is False

    @pytest.mark.asyncio
    async def test_degraded_load_sets_error(self, make_resolver):
        session = PermissionSession(make_resolver(
            StaticPolicySource(error=FetchError(FetchErrorKind.TIMEOUT))
        ))
        await session.load("student")
        assert session.is_degraded() is True
        assert "timeout" in session.error
        assert session.can_write("/assessments") is False

    @pytest.mark.asyncio
    async def test_clear_on_logout(self, make_resolver, admin_document):
        source = StaticPolicySource(admin_document)
        resolver = make_resolver(source)
        session = PermissionSession(resolver)
        await session.load("admin")
        session.clear()
        assert session.role is None
        assert session.available_sections == ()
        assert resolver.cache.entry is None
        assert session.can_write("/assessments") is False

        await session.load("admin")
        assert source.calls == 2

    @pytest.mark.asyncio
    async def test_answers_stay_on_loaded_policy(self, make_resolver, school_document, admin_document):
        source = StaticPolicySource(school_document)
        resolver = make_resolver(source)
        session = PermissionSession(resolver)
        await session.load("teacher")

        # another caller swaps the shared document under the session
        source.set_payload(admin_document)
        await resolver.resolve("teacher", force_refresh=True)
        assert resolver.can_write("teacher", "/attendances") is False

        assert "/attendances" in [s.url for s in session.available_sections]
        assert session.can_write("/attendances") is True

        resolver.invalidate()
        assert session.can_write("/attendances") is True

        await session.load("teacher")
        assert session.available_sections == ()
        assert session.can_write("/attendances") is False
