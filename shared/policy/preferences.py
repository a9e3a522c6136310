"""
shared/policy/preferences.py
User settings as immutable value objects. Stored settings are parsed into
UserSettings (missing keys take defaults) and changed only through
apply_patch, which returns a new object with the provided fields replaced.
"""

from shared.schemas.schemas import UserSettings, UserSettingsPatch


def load_settings(raw: dict | None) -> UserSettings:
    """Parse the stored JSON blob. Unknown keys from older records are dropped."""
    if not raw:
        return UserSettings()
    sections = {}
    for name, model in UserSettings.model_fields.items():
        value = raw.get(name)
        if isinstance(value, dict):
            allowed = model.annotation.model_fields
            sections[name] = {k: v for k, v in value.items() if k in allowed}
    return UserSettings.model_validate(sections)


def apply_patch(current: UserSettings, patch: UserSettingsPatch) -> UserSettings:
    """Merge only the fields present in the patch; everything else is kept."""
    updates = {}
    for name in UserSettings.model_fields:
        section_patch = getattr(patch, name)
        if section_patch is None:
            continue
        changes = section_patch.model_dump(exclude_none=True)
        if changes:
            section = getattr(current, name)
            # model_copy skips validation, so revalidate the merged section
            updates[name] = type(section).model_validate({**section.model_dump(), **changes})
    if not updates:
        return current
    return current.model_copy(update=updates)


def diff_settings(before: UserSettings, after: UserSettings) -> dict:
    """{"privacy.share_contact_info": {"before": False, "after": True}, ...}"""
    changes = {}
    old, new = before.model_dump(), after.model_dump()
    for section, values in new.items():
        for key, value in values.items():
            if old[section][key] != value:
                changes[f"{section}.{key}"] = {"before": old[section][key], "after": value}
    return changes
