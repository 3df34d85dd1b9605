"""Manifest validation: lint findings recorded on a manifest as warnings."""
from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from skillscope.manifests.types import AgentManifest, SkillManifest

if TYPE_CHECKING:
    from skillscope.manifests.types import Manifest

_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9]*(-[a-z0-9]+)*$")
_NAME_MAX_LENGTH = 64
_SKILL_DESCRIPTION_MAX_LENGTH = 1024


class ManifestValidator:
    """Validates a parsed manifest against the corpus conventions."""

    def validate(self, manifest: Manifest) -> list[str]:
        """Return a list of validation error messages.

        An empty list means the manifest is valid.  Opaque manifests
        (no front matter) are not linted; the loader already knows.
        """
        if manifest.opaque:
            return []

        errors: list[str] = []

        # Name checks
        if len(manifest.name) > _NAME_MAX_LENGTH:
            errors.append(
                f"Name exceeds {_NAME_MAX_LENGTH} characters: "
                f"'{manifest.name}' ({len(manifest.name)} chars)."
            )
        if not _NAME_PATTERN.match(manifest.name):
            errors.append(
                f"Name must be lowercase alphanumeric with hyphens: "
                f"'{manifest.name}'."
            )

        if isinstance(manifest, SkillManifest):
            if len(manifest.description) > _SKILL_DESCRIPTION_MAX_LENGTH:
                errors.append(
                    f"Skill description exceeds {_SKILL_DESCRIPTION_MAX_LENGTH} "
                    f"characters ({len(manifest.description)} chars)."
                )
            for ref in manifest.references:
                ref_path = PurePosixPath(ref.path)
                if ref_path.is_absolute() or ".." in ref_path.parts:
                    errors.append(
                        f"Reference must stay inside the skill directory: '{ref.path}'."
                    )

        if isinstance(manifest, AgentManifest):
            if any(not tool.strip() for tool in manifest.tools):
                errors.append("Agent tools list contains an empty entry.")

        return errors
