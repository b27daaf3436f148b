"""Session maintenance that needs only the artifact store.

Both operations delete stored artifacts and return the session moved to
``IDLE`` with the dependent in-session artifacts cleared. The caller saves
the returned state.
"""

import logging

from vacancy_agent.core.state import AgentStatus, SessionState
from vacancy_agent.ports.storage import ArtifactStore

logger = logging.getLogger(__name__)


def reset_profile(store: ArtifactStore, state: SessionState) -> SessionState:
    """Delete the profile and everything derived from it."""
    logger.info("Deleting profile data for %s", state.site_id)
    store.delete_profile(state.site_id)
    return state.advance(
        AgentStatus.IDLE,
        "Profile data reset",
        targeting=None,
        search_dom=None,
        dom_drift=None,
        search_ui=None,
        prefs=None,
        plan=None,
        applied_filters=None,
        verification=None,
    )


def forget_search_history(store: ArtifactStore, state: SessionState) -> SessionState:
    """Delete the seen index and all funnel artifacts for the site."""
    logger.info("Deleting search history for %s", state.site_id)
    store.forget_search_history(state.site_id)
    return state.advance(
        AgentStatus.IDLE,
        "Search history cleared",
        vacancy_batch=None,
        deduped=None,
        prefilter=None,
        screening=None,
        extraction=None,
        evaluation=None,
        apply_queue=None,
        apply_probe=None,
        apply_form=None,
        apply_draft=None,
    )
