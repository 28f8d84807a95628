"""
Tests — affirmation generation and curation.

Covers:
    1. generate_affirmation: first candidate auto-selected + voiced, later
       candidates appended unselected, fallback on transformation failure,
       synthesis failure swallowed
    2. select_affirmation: single-selected invariant, lazy synthesis, voice memory
    3. edit_affirmation: audio discarded, mirror updated
    4. delete_affirmation: only / selected guards
    5. regenerate_voice: voice priority, DependencyError surfaces
    6. Partial unique index on affirmations.is_selected
"""

import pytest
from sqlalchemy import update

from reflection.ai.transformation import FALLBACK_AFFIRMATION
from reflection.core.exceptions import (
    DependencyError, InvalidStateError, NotFoundError, ValidationError,
)
from reflection.models import db
from reflection.models.session import AFFIRMATION_GENERATED, Affirmation, ReflectionSession
from reflection.services.affirmation_curator import (
    delete_affirmation, edit_affirmation, select_affirmation,
)
from reflection.services.affirmation_generator import generate_affirmation, regenerate_voice
from reflection.services.helpers.transactions import commit_unit

PRINCIPAL = "firebase-uid-123"


def _selected(session_id):
    return Affirmation.query.filter_by(session_id=session_id, is_selected=True).all()


def _by_order(session_id, order):
    return Affirmation.query.filter_by(session_id=session_id, order=order).one()


@pytest.fixture()
def three_candidates(generated_session):
    generate_affirmation(PRINCIPAL, generated_session.id)
    return generate_affirmation(PRINCIPAL, generated_session.id)


# ═════════════════════════════════════════════════════════════════════════════
# Generation
# ═════════════════════════════════════════════════════════════════════════════


class TestGenerateAffirmation:

    def test_first_generation(self, captured_session, synthesizer):
        s = generate_affirmation(PRINCIPAL, captured_session.id)
        assert s.status == AFFIRMATION_GENERATED
        assert len(s.affirmations) == 1
        first = s.affirmations[0]
        assert first.order == 0
        assert first.is_selected is True
        assert first.audio_url is not None
        assert first.tts_voice_preference == "ANDROGYNOUS_CALM"
        assert s.generated_affirmation == first.affirmation_text
        assert s.ai_affirmation_audio_url == first.audio_url
        assert s.limiting_belief == "Belief: Money is scarce"
        assert len(synthesizer.calls) == 1

    def test_second_generation_appends_unselected(self, generated_session, synthesizer):
        original = generated_session.selected_affirmation
        s = generate_affirmation(PRINCIPAL, generated_session.id)
        assert s.status == AFFIRMATION_GENERATED
        assert len(s.affirmations) == 2
        second = _by_order(s.id, 1)
        assert second.is_selected is False
        assert second.audio_url is None
        assert [a.id for a in _selected(s.id)] == [original.id]
        assert s.generated_affirmation == original.affirmation_text
        # Only the first candidate is voiced eagerly
        assert len(synthesizer.calls) == 1

    def test_voice_override_is_stored(self, captured_session, synthesizer):
        s = generate_affirmation(PRINCIPAL, captured_session.id, voice_override="Phoenix")
        assert s.affirmations[0].tts_voice_preference == "FEMALE_ENERGETIC"
        assert synthesizer.calls[0][1] == "FEMALE_ENERGETIC"

    def test_unknown_voice_override_falls_back_to_user_default(self, captured_session, user):
        user.tts_voice_preference = "MALE_FRIENDLY"
        db.session.commit()
        s = generate_affirmation(PRINCIPAL, captured_session.id, voice_override="Nobody")
        assert s.affirmations[0].tts_voice_preference == "MALE_FRIENDLY"

    def test_transformation_failure_uses_fallback(self, captured_session, transformer):
        transformer.fail = True
        s = generate_affirmation(PRINCIPAL, captured_session.id)
        assert s.status == AFFIRMATION_GENERATED
        assert s.generated_affirmation == FALLBACK_AFFIRMATION
        assert s.limiting_belief == "Money is scarce"

    def test_synthesis_failure_is_swallowed(self, captured_session, synthesizer):
        synthesizer.fail = True
        s = generate_affirmation(PRINCIPAL, captured_session.id)
        assert s.status == AFFIRMATION_GENERATED
        assert s.affirmations[0].is_selected is True
        assert s.affirmations[0].audio_url is None
        assert s.ai_affirmation_audio_url is None

    def test_generate_from_pending_rejected(self, pending_session):
        with pytest.raises(InvalidStateError) as exc:
            generate_affirmation(PRINCIPAL, pending_session.id)
        assert "BELIEF_CAPTURED or AFFIRMATION_GENERATED" in str(exc.value)

    def test_generate_without_belief_text_rejected(self, captured_session):
        captured_session.raw_belief_text = "  "
        db.session.commit()
        with pytest.raises(InvalidStateError):
            generate_affirmation(PRINCIPAL, captured_session.id)

    def test_order_keeps_increasing_after_delete(self, three_candidates):
        sid = three_candidates.id
        delete_affirmation(PRINCIPAL, sid, _by_order(sid, 1).id)
        generate_affirmation(PRINCIPAL, sid)
        orders = sorted(a.order for a in Affirmation.query.filter_by(session_id=sid))
        assert orders == [0, 2, 3]


# ═════════════════════════════════════════════════════════════════════════════
# Selection
# ═════════════════════════════════════════════════════════════════════════════


class TestSelectAffirmation:

    def test_select_moves_the_flag(self, three_candidates, synthesizer):
        sid = three_candidates.id
        target = _by_order(sid, 2)
        s = select_affirmation(PRINCIPAL, sid, target.id)

        selected = _selected(sid)
        assert [a.id for a in selected] == [target.id]
        assert s.generated_affirmation == target.affirmation_text
        assert s.ai_affirmation_audio_url == selected[0].audio_url
        assert selected[0].audio_url is not None
        assert len(synthesizer.calls) == 2

    def test_select_persists_voice_when_missing(self, three_candidates, user):
        sid = three_candidates.id
        target = _by_order(sid, 1)
        target.tts_voice_preference = None
        user.tts_voice_preference = "MALE_CONFIDENT"
        db.session.commit()

        select_affirmation(PRINCIPAL, sid, target.id)
        db.session.expire_all()
        assert db.session.get(Affirmation, target.id).tts_voice_preference == "MALE_CONFIDENT"

    def test_select_keeps_existing_audio(self, three_candidates, synthesizer):
        sid = three_candidates.id
        first = _by_order(sid, 0)
        select_affirmation(PRINCIPAL, sid, _by_order(sid, 1).id)
        calls = len(synthesizer.calls)

        s = select_affirmation(PRINCIPAL, sid, first.id)
        assert len(synthesizer.calls) == calls
        assert s.ai_affirmation_audio_url == first.audio_url

    def test_select_with_synthesis_failure_still_selects(self, three_candidates, synthesizer):
        synthesizer.fail = True
        sid = three_candidates.id
        target = _by_order(sid, 2)
        s = select_affirmation(PRINCIPAL, sid, target.id)
        assert [a.id for a in _selected(sid)] == [target.id]
        assert s.ai_affirmation_audio_url is None

    def test_select_foreign_affirmation_is_not_found(self, generated_session, category):
        from reflection.services.belief_capture import submit_belief
        from reflection.services.session_service import create_session
        other = create_session(PRINCIPAL, category.id)
        submit_belief(PRINCIPAL, other.id, text="Another belief")
        other = generate_affirmation(PRINCIPAL, other.id)
        foreign_id = other.affirmations[0].id

        with pytest.raises(NotFoundError):
            select_affirmation(PRINCIPAL, generated_session.id, foreign_id)

    def test_invariant_holds_across_many_selections(self, three_candidates):
        sid = three_candidates.id
        for order in (1, 2, 0, 2, 1):
            select_affirmation(PRINCIPAL, sid, _by_order(sid, order).id)
            assert len(_selected(sid)) == 1

    def test_unique_index_rejects_second_selected_row(self, three_candidates):
        sid = three_candidates.id
        second = _by_order(sid, 1)
        second.is_selected = True
        with pytest.raises(InvalidStateError):
            commit_unit("select affirmation")
        assert len(_selected(sid)) == 1


# ═════════════════════════════════════════════════════════════════════════════
# Editing
# ═════════════════════════════════════════════════════════════════════════════


class TestEditAffirmation:

    def test_edit_discards_audio(self, generated_session):
        s = edit_affirmation(PRINCIPAL, generated_session.id, "  I attract wealth  ")
        selected = s.selected_affirmation
        assert selected.affirmation_text == "I attract wealth"
        assert selected.audio_url is None
        assert s.generated_affirmation == "I attract wealth"
        assert s.ai_affirmation_audio_url is None

    def test_edit_with_voice_override(self, generated_session):
        s = edit_affirmation(PRINCIPAL, generated_session.id, "I attract wealth",
                             voice_override="Robin")
        assert s.selected_affirmation.tts_voice_preference == "MALE_CONFIDENT"

    def test_edit_rejects_blank(self, generated_session):
        with pytest.raises(ValidationError):
            edit_affirmation(PRINCIPAL, generated_session.id, "   ")

    def test_edit_requires_affirmation(self, captured_session):
        with pytest.raises(InvalidStateError):
            edit_affirmation(PRINCIPAL, captured_session.id, "text")


# ═════════════════════════════════════════════════════════════════════════════
# Deletion
# ═════════════════════════════════════════════════════════════════════════════


class TestDeleteAffirmation:

    def test_cannot_delete_only_affirmation(self, generated_session):
        only = generated_session.affirmations[0]
        with pytest.raises(InvalidStateError) as exc:
            delete_affirmation(PRINCIPAL, generated_session.id, only.id)
        assert "only affirmation" in str(exc.value)

    def test_cannot_delete_selected(self, three_candidates):
        sid = three_candidates.id
        selected = _selected(sid)[0]
        with pytest.raises(InvalidStateError) as exc:
            delete_affirmation(PRINCIPAL, sid, selected.id)
        assert "selected affirmation" in str(exc.value)

    def test_delete_unselected(self, three_candidates):
        sid = three_candidates.id
        selected_id = _selected(sid)[0].id
        victim = _by_order(sid, 2)
        delete_affirmation(PRINCIPAL, sid, victim.id)

        remaining = Affirmation.query.filter_by(session_id=sid).all()
        assert len(remaining) == 2
        assert [a.id for a in _selected(sid)] == [selected_id]

    def test_delete_missing_is_not_found(self, three_candidates):
        with pytest.raises(NotFoundError):
            delete_affirmation(PRINCIPAL, three_candidates.id, "nope")

    def test_session_delete_cascades(self, three_candidates):
        sid = three_candidates.id
        db.session.delete(db.session.get(ReflectionSession, sid))
        db.session.commit()
        assert Affirmation.query.filter_by(session_id=sid).count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# Voice regeneration
# ═════════════════════════════════════════════════════════════════════════════


class TestRegenerateVoice:

    def test_override_wins_and_is_remembered(self, generated_session, synthesizer):
        s = regenerate_voice(PRINCIPAL, generated_session.id, voice_override="Sage")
        selected = s.selected_affirmation
        assert synthesizer.calls[-1][1] == "ANDROGYNOUS_WISE"
        assert selected.tts_voice_preference == "ANDROGYNOUS_WISE"
        assert selected.audio_url == s.ai_affirmation_audio_url

    def test_stored_voice_beats_user_default(self, generated_session, synthesizer, user):
        generated_session.selected_affirmation.tts_voice_preference = "FEMALE_EMPATHETIC"
        user.tts_voice_preference = "MALE_CONFIDENT"
        db.session.commit()
        regenerate_voice(PRINCIPAL, generated_session.id)
        assert synthesizer.calls[-1][1] == "FEMALE_EMPATHETIC"

    def test_user_default_when_nothing_stored(self, generated_session, synthesizer, user):
        generated_session.selected_affirmation.tts_voice_preference = None
        user.tts_voice_preference = "MALE_CONFIDENT"
        db.session.commit()
        s = regenerate_voice(PRINCIPAL, generated_session.id)
        assert synthesizer.calls[-1][1] == "MALE_CONFIDENT"
        assert s.selected_affirmation.tts_voice_preference == "MALE_CONFIDENT"

    def test_regenerate_after_edit_restores_audio(self, generated_session):
        edit_affirmation(PRINCIPAL, generated_session.id, "I attract wealth")
        s = regenerate_voice(PRINCIPAL, generated_session.id)
        assert s.ai_affirmation_audio_url is not None
        assert s.selected_affirmation.audio_url == s.ai_affirmation_audio_url

    def test_synthesis_failure_surfaces(self, generated_session, synthesizer):
        before = generated_session.ai_affirmation_audio_url
        synthesizer.fail = True
        with pytest.raises(DependencyError):
            regenerate_voice(PRINCIPAL, generated_session.id)
        db.session.expire_all()
        assert db.session.get(ReflectionSession, generated_session.id).ai_affirmation_audio_url == before

    def test_regenerate_requires_affirmation(self, captured_session):
        with pytest.raises(InvalidStateError):
            regenerate_voice(PRINCIPAL, captured_session.id)


# ═════════════════════════════════════════════════════════════════════════════
# Mirror vs. selection under interleaving
# ═════════════════════════════════════════════════════════════════════════════


class TestMirrorFollowsSelection:

    def _assert_mirror_matches_selection(self, sid):
        db.session.expire_all()
        s = db.session.get(ReflectionSession, sid)
        selected = _selected(sid)
        assert len(selected) == 1
        assert s.generated_affirmation == selected[0].affirmation_text
        assert s.ai_affirmation_audio_url == selected[0].audio_url
        return selected[0]

    def test_selection_during_voice_regeneration_discards_audio(
            self, three_candidates, synthesizer, monkeypatch):
        sid = three_candidates.id
        other_id = _by_order(sid, 1).id
        real_synthesize = synthesizer.synthesize
        interleaved = []

        def synthesize_while_user_selects(text, voice, *, owner=None):
            url = real_synthesize(text, voice, owner=owner)
            if not interleaved:
                interleaved.append(url)
                select_affirmation(PRINCIPAL, sid, other_id)
            return url

        monkeypatch.setattr(synthesizer, "synthesize", synthesize_while_user_selects)
        with pytest.raises(InvalidStateError) as exc:
            regenerate_voice(PRINCIPAL, sid)
        assert "selected affirmation changed" in str(exc.value)

        selected = self._assert_mirror_matches_selection(sid)
        assert selected.id == other_id
        assert selected.audio_url != interleaved[0]

    def test_edit_during_voice_regeneration_discards_audio(
            self, generated_session, synthesizer, monkeypatch):
        sid = generated_session.id
        real_synthesize = synthesizer.synthesize
        interleaved = []

        def synthesize_while_user_edits(text, voice, *, owner=None):
            url = real_synthesize(text, voice, owner=owner)
            if not interleaved:
                interleaved.append(url)
                edit_affirmation(PRINCIPAL, sid, "I attract wealth")
            return url

        monkeypatch.setattr(synthesizer, "synthesize", synthesize_while_user_edits)
        with pytest.raises(InvalidStateError):
            regenerate_voice(PRINCIPAL, sid)

        selected = self._assert_mirror_matches_selection(sid)
        assert selected.affirmation_text == "I attract wealth"
        assert selected.audio_url is None

    def test_edit_targets_selection_committed_elsewhere(self, three_candidates):
        sid = three_candidates.id
        s = db.session.get(ReflectionSession, sid)
        old_id = s.selected_affirmation.id
        new_id = _by_order(sid, 2).id

        # Another request moves the selection without touching loaded objects
        db.session.execute(
            update(Affirmation).where(Affirmation.session_id == sid)
            .values(is_selected=False)
            .execution_options(synchronize_session=False)
        )
        db.session.execute(
            update(Affirmation).where(Affirmation.id == new_id)
            .values(is_selected=True)
            .execution_options(synchronize_session=False)
        )

        edit_affirmation(PRINCIPAL, sid, "I attract wealth")

        selected = self._assert_mirror_matches_selection(sid)
        assert selected.id == new_id
        assert selected.affirmation_text == "I attract wealth"
        assert db.session.get(Affirmation, old_id).affirmation_text != "I attract wealth"
