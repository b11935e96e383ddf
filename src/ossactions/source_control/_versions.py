"""Version identifier parsing and formatting.

This module provides VersionResolver, which converts between the prefixed
string form of a version (``b:main``, ``t:v1``), the typed SourceVersion and
the concrete SourceControlVersion reference.
"""

from ossactions.exceptions import ValidationError
from ossactions.source_control._models import (
    SourceControlVersion,
    SourceVersion,
    SourceVersionType,
)
from ossactions.utils._git import BRANCH_PREFIX, TAG_PREFIX, is_object_id, is_valid_ref_name

_SEPARATOR = ":"


class VersionResolver:
    """Parse, format and resolve version identifiers.

    The resolver is stateless; a single instance can be shared freely.

    Example:
        >>> resolver = VersionResolver()
        >>> version = resolver.parse("b:main")
        >>> resolver.format(version)
        'b:main'
        >>> resolver.resolve(version).ref
        'refs/heads/main'
    """

    def parse(self, text: str) -> SourceVersion:
        """Parse a prefixed version string.

        Args:
            text: Version string such as ``b:main`` or ``t:v1.0``.

        Returns:
            The typed version.

        Raises:
            ValidationError: If the prefix is missing or unknown, or the name
                is not a valid reference name.
        """
        prefix, sep, name = text.partition(_SEPARATOR)
        if not sep:
            msg = f"Version is missing a type prefix: {text!r}"
            raise ValidationError(msg, name=text)
        try:
            version_type = SourceVersionType(prefix)
        except ValueError:
            msg = f"Unknown version prefix {prefix!r} in {text!r}"
            raise ValidationError(msg, name=text) from None
        if not is_valid_ref_name(name):
            msg = f"Invalid version name: {name!r}"
            raise ValidationError(msg, name=text)
        return SourceVersion(version_type, name)

    def format(self, version: SourceVersion) -> str:
        """Format a version as its prefixed string.

        Raises:
            ValidationError: If the name is not a valid reference name.
        """
        if not is_valid_ref_name(version.name):
            msg = f"Invalid version name: {version.name!r}"
            raise ValidationError(msg, name=version.name)
        return str(version)

    def resolve(
        self,
        version: SourceVersion | str,
        commit_id: str | None = None,
    ) -> SourceControlVersion:
        """Map a symbolic version to a concrete reference.

        Args:
            version: Typed version or its prefixed string.
            commit_id: Optional commit to pin the reference to.

        Returns:
            The reference, pinned to ``commit_id`` when given.

        Raises:
            ValidationError: If the version or commit id is malformed.
        """
        if isinstance(version, str):
            version = self.parse(version)
        elif not is_valid_ref_name(version.name):
            msg = f"Invalid version name: {version.name!r}"
            raise ValidationError(msg, name=version.name)
        if commit_id and not is_object_id(commit_id):
            msg = f"Invalid commit id: {commit_id!r}"
            raise ValidationError(msg, name=commit_id)
        prefix = BRANCH_PREFIX if version.type is SourceVersionType.BRANCH else TAG_PREFIX
        return SourceControlVersion(f"{prefix}{version.name}", commit_id or None)

    def from_ref(self, ref: str) -> SourceVersion:
        """Map a full branch or tag reference back to its symbolic version.

        Raises:
            ValidationError: If the reference is neither a branch nor a tag.
        """
        try:
            return SourceControlVersion(ref).source_version
        except ValueError as e:
            raise ValidationError(str(e), name=ref) from e
