import pytest

from roadtrip.core.errors import NotFoundError, QuotaExceededError


def test_ai_consultation_limit_names_feature(resources, make_account, now):
    user_id = make_account().user.id
    resources.record_ai_consultation(user_id, {"prompt": "best beaches"}, now=now)

    with pytest.raises(QuotaExceededError) as exc:
        resources.record_ai_consultation(user_id, {"prompt": "more beaches"}, now=now)
    assert exc.value.feature == "aiConsultations"
    assert exc.value.limit == 1


def test_favorites_are_not_limited(resources, make_account, now):
    user_id = make_account().user.id
    ids = {resources.add_favorite(user_id, {"n": i}, now=now).id for i in range(10)}
    assert len(ids) == 10


def test_favorite_for_unknown_user(resources, now):
    with pytest.raises(NotFoundError):
        resources.add_favorite("ghost", now=now)
