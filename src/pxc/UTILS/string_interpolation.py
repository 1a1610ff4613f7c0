"""
Utilities for string interpolation using environment variables and build arguments.
"""
import re
from typing import Dict, Mapping, Optional, Set

# Group 1: VAR name, group 2: - or +, group 3: default or alternate value
_ENV_PATTERN = re.compile(r'\$\{([^}:]+)(?::(-|\+)([^}]*))?\}')
_BUILD_ARG_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)')


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings.
    Supports ${VAR}, ${VAR:-default}, and ${VAR:+value}.
    """
    @staticmethod
    def interpolate(template: str,
                    context: Mapping[str, str],
                    strict: bool = True,
                    missing: Optional[Set[str]] = None) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :param strict: Raise for an unset ${VAR}; otherwise substitute an empty string.
        :param missing: Collects the names of unset variables when not strict.
        :return: The interpolated string.
        :raises KeyError: If strict and a variable is not found and no default is provided.
        """
        def replace(match):
            """
            Internal replacement function for re.sub.
            """
            var_name = match.group(1)
            modifier = match.group(2)  # None, '-', or '+'
            alt_value = match.group(3)

            value = context.get(var_name)

            if modifier == '-':
                # ${VAR:-default} -> use default if VAR is unset or empty
                return value if value else alt_value
            elif modifier == '+':
                # ${VAR:+value} -> use alt_value if VAR is set and not empty, else empty
                return alt_value if value else ''
            if value is not None:
                return value
            if strict:
                raise KeyError(f"Variable {var_name} not found in context")
            if missing is not None:
                missing.add(var_name)
            return ''

        return _ENV_PATTERN.sub(replace, template)


def expand_build_args(command: str, build_args: Mapping[str, str]) -> str:
    """
    Substitutes build arguments into a command, in both ``${KEY}`` and bare
    ``$KEY`` forms. References to names that are not build arguments are left
    for the container's shell.

    :param command: The command string from a run step.
    :param build_args: Build argument values keyed by name.
    :return: The expanded command.
    """
    def replace(match):
        name = match.group(1) or match.group(2)
        if name in build_args:
            return build_args[name]
        return match.group(0)

    return _BUILD_ARG_PATTERN.sub(replace, command)


def parse_key_value_pairs(pairs) -> Dict[str, str]:
    """
    Parses ``KEY=VALUE`` strings, as given on the command line.

    :raises ValueError: If an entry has no ``=`` or an empty key.
    """
    parsed = {}
    for pair in pairs:
        key, sep, value = pair.partition('=')
        if not sep or not key.strip():
            raise ValueError(f"expected KEY=VALUE, got '{pair}'")
        parsed[key.strip()] = value
    return parsed
