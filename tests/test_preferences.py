"""
tests/test_preferences.py
User settings value objects: loading stored blobs, partial patches, diffs.
"""

import pytest
from pydantic import ValidationError

from shared.policy.preferences import apply_patch, diff_settings, load_settings
from shared.schemas.schemas import UserSettings, UserSettingsPatch


def test_empty_settings_take_defaults():
    settings = load_settings(None)
    assert settings.privacy.profile_visibility == "public"
    assert settings.privacy.share_contact_info is False
    assert settings.privacy.allow_data_collection is True


def test_unknown_stored_keys_are_dropped():
    settings = load_settings({
        "privacy": {"profile_visibility": "contacts", "legacy_flag": True},
        "theme_v0": "dark",
    })
    assert settings.privacy.profile_visibility == "contacts"
    assert "legacy_flag" not in settings.privacy.model_dump()


def test_patch_replaces_only_provided_fields():
    current = load_settings({"privacy": {"profile_visibility": "contacts", "share_contact_info": True}})
    patch = UserSettingsPatch.model_validate({"privacy": {"share_booking_history": True}})
    updated = apply_patch(current, patch)

    assert updated.privacy.profile_visibility == "contacts"
    assert updated.privacy.share_contact_info is True
    assert updated.privacy.share_booking_history is True
    assert updated.notifications == current.notifications


def test_patch_returns_new_object():
    current = UserSettings()
    patch = UserSettingsPatch.model_validate({"privacy": {"profile_visibility": "private"}})
    updated = apply_patch(current, patch)
    assert updated is not current
    assert current.privacy.profile_visibility == "public"


def test_settings_are_immutable():
    settings = UserSettings()
    with pytest.raises(ValidationError):
        settings.privacy.profile_visibility = "private"


def test_invalid_visibility_rejected():
    with pytest.raises(ValidationError):
        UserSettingsPatch.model_validate({"privacy": {"profile_visibility": "friends"}})


def test_empty_patch_is_identity():
    current = UserSettings()
    assert apply_patch(current, UserSettingsPatch()) is current


def test_diff_lists_changed_paths():
    before = UserSettings()
    after = apply_patch(
        before,
        UserSettingsPatch.model_validate({"privacy": {"share_contact_info": True}}),
    )
    assert diff_settings(before, after) == {
        "privacy.share_contact_info": {"before": False, "after": True}
    }
