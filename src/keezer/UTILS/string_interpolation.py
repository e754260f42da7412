"""
Utilities for string interpolation using environment variables.
"""
import re
from typing import Dict

# $$ escape, ${VAR}, ${VAR:-default}, ${VAR:+value}
_PATTERN = re.compile(r'\$\$|\$\{([^}:]+)(?::(-|\+)([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Utility for interpolating environment variables in strings, following
    docker compose rules. Supports ${VAR}, ${VAR:-default}, ${VAR:+value} and
    the $$ escape for a literal dollar sign.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str], strict: bool = True) -> str:
        """
        Interpolates environment variables in the template string using the provided context.

        :param template: The string containing ${VAR} placeholders.
        :param context: The environment variables context.
        :param strict: Raise for unset variables instead of substituting ''.
        :return: The interpolated string.
        :raises KeyError: If strict and a variable is not found and has no default.
        """
        def replace(match):
            """
            Internal replacement function for re.sub.
            """
            if match.group(0) == "$$":
                return "$"
            var_name = match.group(1)
            modifier = match.group(2)  # None, '-', or '+'
            alt_value = match.group(3)  # default_val or value_if_set

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
            return ''

        return _PATTERN.sub(replace, template)
