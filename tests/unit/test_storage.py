"""Tests for the artifact stores: round trips, site isolation and cascades."""

from collections.abc import Iterator

import pytest

from vacancy_agent.core.schemas import (
    AppliedFiltersSnapshot,
    ControlType,
    FiltersVerification,
    ProfileSnapshot,
    SearchApplyPlan,
    SearchDOMSnapshot,
    SearchFieldDefinition,
    SearchUISpec,
    SemanticType,
    TargetingSpec,
    TargetRoles,
    UserSearchPrefs,
)
from vacancy_agent.core.state import AgentStatus, SessionState
from vacancy_agent.core.vacancies import (
    ApplyDraftSnapshot,
    ApplySubmitReceipt,
    QueueItemStatus,
    SeenIndex,
    VacancyCard,
    VacancyCardBatch,
    VacancySalary,
)
from vacancy_agent.ports.storage import CURRENT, ArtifactSlot, ArtifactStore
from vacancy_agent.storage.memory import MemoryArtifactStore
from vacancy_agent.storage.sqlite import SqliteArtifactStore, init_db

SITE = "hh.ru"


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path) -> Iterator[ArtifactStore]:  # type: ignore[no-untyped-def]
    """Run every test against both backends."""
    if request.param == "memory":
        backend: ArtifactStore = MemoryArtifactStore()
    else:
        backend = SqliteArtifactStore.open(tmp_path / "agent.db")
    yield backend
    backend.close()


def _fill_profile_chain(store: ArtifactStore, site_id: str = SITE) -> None:
    store.save_profile(ProfileSnapshot(
        site_id=site_id, source_url="https://hh.ru/resume/1", raw_content="cv", content_hash="h",
    ))
    store.save_targeting_spec(site_id, TargetingSpec(
        target_roles=TargetRoles(en_titles=["Python Developer"]),
    ))
    store.save_search_dom_snapshot(SearchDOMSnapshot(site_id=site_id, page_url="u", dom_hash="d"))
    store.save_search_ui_spec(SearchUISpec(
        site_id=site_id,
        source_url="u",
        fields=(SearchFieldDefinition(
            key="text", label="Ключевые слова", ui_control_type=ControlType.TEXT,
            semantic_type=SemanticType.KEYWORD,
        ),),
    ))
    store.save_user_search_prefs(UserSearchPrefs(site_id=site_id, filters={"text": "Python"}))
    store.save_search_apply_plan(SearchApplyPlan(site_id=site_id))
    store.save_applied_filters_snapshot(AppliedFiltersSnapshot(site_id=site_id))
    store.save_filters_verification(FiltersVerification(site_id=site_id, verified=True))


# ---------------------------------------------------------------------------
# TestRoundTrip
# ---------------------------------------------------------------------------


class TestRoundTrip:
    def test_missing_returns_none(self, store: ArtifactStore) -> None:
        assert store.get_profile(SITE) is None
        assert store.get_vacancy_batch(SITE, "nope") is None
        assert store.get_session_state(SITE) is None

    def test_vacancy_batch(self, store: ArtifactStore) -> None:
        card = VacancyCard(
            id="c1", site_id=SITE, url="https://hh.ru/vacancy/1", title="Python Developer",
            card_hash="h1", salary=VacancySalary(min=300000),
        )
        batch = VacancyCardBatch(batch_id="b1", site_id=SITE, query_fingerprint="fp", cards=(card,))
        store.save_vacancy_batch(batch)
        loaded = store.get_vacancy_batch(SITE, "b1")
        assert loaded == batch
        assert loaded is not None and loaded.cards[0].salary.min == 300000  # type: ignore[union-attr]

    def test_replace_in_place(self, store: ArtifactStore) -> None:
        store.save_seen_index(SeenIndex(site_id=SITE, seen_keys=("EXT:1",)))
        store.save_seen_index(SeenIndex(site_id=SITE, seen_keys=("EXT:1", "EXT:2")))
        index = store.get_seen_index(SITE)
        assert index is not None
        assert index.seen_keys == ("EXT:1", "EXT:2")

    def test_session_state(self, store: ArtifactStore) -> None:
        state = SessionState(site_id=SITE, status=AgentStatus.IDLE, logs=("started",))
        store.save_session_state(state)
        loaded = store.get_session_state(SITE)
        assert loaded is not None
        assert loaded.id == state.id
        assert loaded.logs == ("started",)

    def test_apply_artifacts_keyed_by_vacancy(self, store: ArtifactStore) -> None:
        store.save_apply_draft(ApplyDraftSnapshot(vacancy_id="v1", site_id=SITE))
        store.save_apply_receipt(ApplySubmitReceipt(
            receipt_id="r1", vacancy_id="v2", site_id=SITE,
            success_confirmed=True, final_status=QueueItemStatus.APPLIED,
        ))
        assert store.get_apply_draft(SITE, "v1") is not None
        assert store.get_apply_draft(SITE, "v2") is None
        receipt = store.get_apply_receipt(SITE, "v2")
        assert receipt is not None and receipt.final_status == QueueItemStatus.APPLIED

    def test_sites_are_isolated(self, store: ArtifactStore) -> None:
        _fill_profile_chain(store, "linkedin")
        assert store.get_profile(SITE) is None
        assert store.get_profile("linkedin") is not None


# ---------------------------------------------------------------------------
# TestCascades
# ---------------------------------------------------------------------------


class TestCascades:
    def test_delete_profile_removes_dependents(self, store: ArtifactStore) -> None:
        _fill_profile_chain(store)
        store.save_seen_index(SeenIndex(site_id=SITE, seen_keys=("EXT:1",)))
        store.delete_profile(SITE)
        assert store.get_profile(SITE) is None
        assert store.get_targeting_spec(SITE) is None
        assert store.get_search_ui_spec(SITE) is None
        assert store.get_user_search_prefs(SITE) is None
        assert store.get_search_apply_plan(SITE) is None
        assert store.get_applied_filters_snapshot(SITE) is None
        assert store.get_filters_verification(SITE) is None
        # the raw form capture and search history outlive a profile reset
        assert store.get_search_dom_snapshot(SITE) is not None
        assert store.get_seen_index(SITE) is not None

    def test_delete_profile_leaves_other_sites(self, store: ArtifactStore) -> None:
        _fill_profile_chain(store)
        _fill_profile_chain(store, "linkedin")
        store.delete_profile(SITE)
        assert store.get_targeting_spec("linkedin") is not None

    def test_invalidate_search_plan_keeps_prefs(self, store: ArtifactStore) -> None:
        _fill_profile_chain(store)
        store.invalidate_search_plan(SITE)
        assert store.get_user_search_prefs(SITE) is not None
        assert store.get_search_apply_plan(SITE) is None
        assert store.get_applied_filters_snapshot(SITE) is None
        assert store.get_filters_verification(SITE) is None

    def test_invalidate_search_form(self, store: ArtifactStore) -> None:
        _fill_profile_chain(store)
        store.invalidate_search_form(SITE)
        assert store.get_search_dom_snapshot(SITE) is None
        assert store.get_search_ui_spec(SITE) is None
        assert store.get_user_search_prefs(SITE) is None
        assert store.get_search_apply_plan(SITE) is None
        assert store.get_filters_verification(SITE) is None
        assert store.get_targeting_spec(SITE) is not None

    def test_clear_page_state_keeps_plan(self, store: ArtifactStore) -> None:
        _fill_profile_chain(store)
        store.clear_page_state(SITE)
        assert store.get_search_apply_plan(SITE) is not None
        assert store.get_applied_filters_snapshot(SITE) is None
        assert store.get_filters_verification(SITE) is None

    def test_forget_search_history(self, store: ArtifactStore) -> None:
        _fill_profile_chain(store)
        store.save_seen_index(SeenIndex(site_id=SITE, seen_keys=("EXT:1",)))
        store.save_vacancy_batch(VacancyCardBatch(batch_id="b1", site_id=SITE, query_fingerprint="fp"))
        store.forget_search_history(SITE)
        assert store.get_seen_index(SITE) is None
        assert store.get_vacancy_batch(SITE, "b1") is None
        assert store.get_targeting_spec(SITE) is not None


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class TestSqlite:
    def test_init_db_idempotent(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        path = tmp_path / "nested" / "agent.db"
        init_db(path).close()
        conn = init_db(path)
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        assert "artifacts" in tables

    def test_persists_across_connections(self, tmp_path) -> None:  # type: ignore[no-untyped-def]
        path = tmp_path / "agent.db"
        first = SqliteArtifactStore.open(path)
        first.save_seen_index(SeenIndex(site_id=SITE, seen_keys=("EXT:9",)))
        first.close()
        second = SqliteArtifactStore.open(path)
        index = second.get_seen_index(SITE)
        second.close()
        assert index is not None and index.seen_keys == ("EXT:9",)


class TestMemory:
    def test_wrong_model_type_raises(self) -> None:
        store = MemoryArtifactStore()
        store.save_seen_index(SeenIndex(site_id=SITE))
        with pytest.raises(TypeError, match="not ProfileSnapshot"):
            store._load(SITE, ArtifactSlot.SEEN_INDEX, CURRENT, ProfileSnapshot)
