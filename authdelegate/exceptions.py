"""Exceptions raised while loading the auth delegate configuration."""

from typing import List


class ConfigurationError(RuntimeError):
    """The auth delegate cannot be configured from the provided options."""


class OptionsParseError(ConfigurationError):
    """The options document is not valid JSON, or a field has a bad type."""


class InvalidOptions(ConfigurationError):
    """
    The options parsed, but failed validation.

    Carries every message collected during validation, so that a
    misconfigured deployment can be fixed in one pass.
    """

    def __init__(self, messages: List[str]) -> None:
        self.messages = list(messages)
        super(InvalidOptions, self).__init__(
            'Invalid options:\n  ' + '\n  '.join(self.messages)
        )
